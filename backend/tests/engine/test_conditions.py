"""Unit tests for the Condition Evaluator

Tests cover:
- Key path resolution through maps and lists
- Operator semantics, including missing values
- Type coercion of literals
- Condition.from_config
"""

import copy

import pytest

from hybridflow.engine.conditions import MISSING, Condition, evaluate, resolve_key_path


class TestResolveKeyPath:
    """Test dot-separated key path resolution."""

    def test_nested_maps(self):
        data = {"query": {"utm_source": "ppc"}}
        assert resolve_key_path(data, "query.utm_source") == "ppc"

    def test_list_index(self):
        data = {"items": [{"sku": "a"}, {"sku": "b"}]}
        assert resolve_key_path(data, "items.1.sku") == "b"

    def test_missing_segment(self):
        assert resolve_key_path({"query": {}}, "query.utm_source") is MISSING

    def test_index_out_of_range(self):
        assert resolve_key_path({"items": [1]}, "items.3") is MISSING

    def test_non_numeric_index_on_list(self):
        assert resolve_key_path({"items": [1]}, "items.first") is MISSING

    def test_walk_into_scalar(self):
        assert resolve_key_path({"a": 5}, "a.b") is MISSING

    @pytest.mark.parametrize("path", ["", "   ", "a..b", None])
    def test_invalid_paths(self, path):
        assert resolve_key_path({"a": {"b": 1}}, path) is MISSING

    def test_none_value_is_not_missing(self):
        assert resolve_key_path({"a": None}, "a") is None


class TestEvaluate:
    """Test operator semantics."""

    def test_equality(self):
        data = {"query": {"utm_source": "ppc"}}
        assert evaluate(data, "query.utm_source", "==", "ppc") is True
        assert evaluate(data, "query.utm_source", "==", "organic") is False

    def test_strict_equality_alias(self):
        assert evaluate({"a": 1}, "a", "===", 1) is True

    def test_not_equal(self):
        assert evaluate({"a": "x"}, "a", "!=", "y") is True
        assert evaluate({"a": "x"}, "a", "!=", "x") is False

    def test_missing_is_false_except_not_equal(self):
        for op in ("==", "===", ">", "<", ">=", "<=", "contains"):
            assert evaluate({}, "absent", op, "x") is False
        assert evaluate({}, "absent", "!=", "x") is True

    def test_numeric_coercion(self):
        data = {"order": {"total": 150}}
        assert evaluate(data, "order.total", ">", "100") is True
        assert evaluate(data, "order.total", "<=", "150") is True
        assert evaluate(data, "order.total", "==", "150") is True

    def test_string_field_against_number(self):
        assert evaluate({"qty": "7"}, "qty", ">=", 7) is True

    def test_boolean_coercion(self):
        assert evaluate({"vip": True}, "vip", "==", "true") is True
        assert evaluate({"vip": False}, "vip", "==", "TRUE") is False

    def test_bool_is_not_one(self):
        assert evaluate({"flag": True}, "flag", "==", 1) is False

    def test_ordering_type_mismatch_is_false(self):
        assert evaluate({"a": "abc"}, "a", ">", 5) is False
        assert evaluate({"a": {"x": 1}}, "a", "<", 5) is False

    def test_ordering_rejects_booleans(self):
        assert evaluate({"a": True}, "a", ">", 0) is False

    def test_contains_string(self):
        assert evaluate({"ref": "google.com/ads"}, "ref", "contains", "ads") is True

    def test_contains_list(self):
        data = {"tags": ["vip", "beta"]}
        assert evaluate(data, "tags", "contains", "vip") is True
        assert evaluate(data, "tags", "contains", "gold") is False

    def test_contains_map_key(self):
        assert evaluate({"headers": {"x-id": "1"}}, "headers", "contains", "x-id") is True

    def test_named_operators(self):
        data = {"order": {"total": 150, "status": "paid"}}
        assert evaluate(data, "order.status", "equals", "paid") is True
        assert evaluate(data, "order.total", "strictEquals", 150) is True
        assert evaluate(data, "order.status", "notEquals", "paid") is False
        assert evaluate(data, "order.total", "greaterThan", "100") is True
        assert evaluate(data, "order.total", "lessThan", 100) is False
        assert evaluate(data, "order.total", "greaterThanOrEqual", 150) is True
        assert evaluate(data, "order.total", "lessThanOrEqual", "149") is False

    def test_named_not_equals_on_missing(self):
        assert evaluate({}, "absent", "notEquals", "x") is True
        assert evaluate({}, "absent", "equals", "x") is False

    def test_unknown_operator(self):
        assert evaluate({"a": 1}, "a", "~=", 1) is False

    def test_does_not_mutate_input(self):
        data = {"order": {"total": 150, "tags": ["a"]}}
        before = copy.deepcopy(data)
        evaluate(data, "order.total", ">", "100")
        evaluate(data, "order.tags", "contains", "a")
        assert data == before


class TestConditionFromConfig:
    """Test building conditions from node config."""

    def test_key_alias(self):
        condition = Condition.from_config({"key": "query.utm_source", "operator": "==", "value": "ppc"})
        assert condition.key_path == "query.utm_source"
        assert condition.evaluate({"query": {"utm_source": "ppc"}}) is True

    def test_key_path_field(self):
        condition = Condition.from_config({"keyPath": "a", "value": 1})
        assert condition.operator == "=="

    @pytest.mark.parametrize("config", [None, {}, {"key": ""}, {"operator": "=="}, "a == 1"])
    def test_unusable_config(self, config):
        assert Condition.from_config(config) is None

    def test_resolve_missing_is_none(self):
        condition = Condition(key_path="a.b")
        assert condition.resolve({}) is None
