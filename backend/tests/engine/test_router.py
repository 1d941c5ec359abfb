"""Unit tests for the Router

Tests cover:
- Decision values of results
- Edge resolution (unconditional, labeled, failure routes)
- Eligibility of fan-in targets and dead-path bypass
- Input computation for eligible nodes
"""

import pytest

from hybridflow.engine.router import Router, decision_value
from hybridflow.engine.state import EdgeState, ExecutionState, NodeExecutionResult

# Import node types to ensure registration
import hybridflow.nodes  # noqa: F401


@pytest.fixture
def router():
    return Router()


def _settle(router, graph, state, node_id, result):
    """Record a node's result the way the engine does, return eligible ids."""
    if result.status.value == "failed":
        state.mark_failed(node_id, result.output)
    else:
        state.mark_completed(node_id, result.output)
    return [n.id for n in router.next_eligible(graph, node_id, result, state)]


class TestDecisionValue:

    def test_condition_result(self):
        assert decision_value(NodeExecutionResult.success({"_conditionResult": True})) == "true"
        assert decision_value(NodeExecutionResult.success({"_conditionResult": False})) == "false"

    def test_route(self):
        assert decision_value(NodeExecutionResult.success({"_route": "vip"})) == "vip"

    def test_failed(self):
        assert decision_value(NodeExecutionResult.failed("x")) == "failed"

    def test_none(self):
        assert decision_value(NodeExecutionResult.success({"a": 1})) is None


class TestNextEligible:

    def test_true_branch_and_bypass(self, router, ppc_graph):
        state = ExecutionState()
        result = NodeExecutionResult.success({"_conditionResult": True})
        eligible = _settle(router, ppc_graph, state, "2", result)

        assert eligible == ["3"]
        assert state.edge_states["e2-3"] == EdgeState.FIRED.value
        assert state.edge_states["e2-8"] == EdgeState.DEAD.value
        assert "8" in state.bypassed_nodes

    def test_false_branch_bypasses_whole_path(self, router, ppc_graph):
        state = ExecutionState()
        result = NodeExecutionResult.success({"_conditionResult": False})
        eligible = _settle(router, ppc_graph, state, "2", result)

        assert eligible == ["8"]
        for node_id in ("3", "4", "5", "6", "7"):
            assert node_id in state.bypassed_nodes

    def test_fan_out_in_declaration_order(self, router, ppc_graph):
        state = ExecutionState()
        eligible = _settle(router, ppc_graph, state, "5", NodeExecutionResult.success({"code": "C"}))
        assert eligible == ["6", "7"]

    def test_suspended_result_resolves_nothing(self, router, ppc_graph):
        state = ExecutionState()
        result = NodeExecutionResult.suspended({})
        assert router.next_eligible(ppc_graph, "3", result, state) == []
        assert state.edge_states == {}

    def test_label_matches_route(self, router, make_graph):
        graph = make_graph(
            [
                {"id": "s", "type": "switch", "config": {"rules": []}},
                {"id": "vip", "type": "console-log"},
                {"id": "std", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "s", "target": "vip", "condition": "vip"},
                {"id": "e2", "source": "s", "target": "std", "condition": "standard"},
            ],
        )
        state = ExecutionState()
        eligible = _settle(router, graph, state, "s", NodeExecutionResult.success({"_route": "vip"}))
        assert eligible == ["vip"]
        assert state.bypassed_nodes == ["std"]

    def test_unlabeled_edges_fire_on_skip(self, router, make_graph, chain):
        graph = make_graph(
            [{"id": "a", "type": "start"}, {"id": "b", "type": "console-log"}],
            chain("a", "b"),
        )
        state = ExecutionState()
        assert _settle(router, graph, state, "a", NodeExecutionResult.skipped()) == ["b"]

    def test_failure_route(self, router, make_graph):
        graph = make_graph(
            [
                {"id": "a", "type": "fetch", "config": {"url": "https://example.com"}},
                {"id": "ok", "type": "console-log"},
                {"id": "recover", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "a", "target": "ok"},
                {"id": "e2", "source": "a", "target": "recover", "condition": "failed"},
            ],
        )
        assert router.failure_is_handled(graph, "a")

        state = ExecutionState()
        eligible = _settle(router, graph, state, "a", NodeExecutionResult.failed("timeout"))
        assert eligible == ["recover"]
        assert "ok" in state.bypassed_nodes

    def test_failure_route_dead_on_success(self, router, make_graph):
        graph = make_graph(
            [
                {"id": "a", "type": "start"},
                {"id": "ok", "type": "console-log"},
                {"id": "recover", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "a", "target": "ok"},
                {"id": "e2", "source": "a", "target": "recover", "condition": "error"},
            ],
        )
        state = ExecutionState()
        assert _settle(router, graph, state, "a", NodeExecutionResult.success()) == ["ok"]
        assert "recover" in state.bypassed_nodes

    def test_unhandled_failure(self, router, ppc_graph):
        assert not router.failure_is_handled(ppc_graph, "5")


class TestFanIn:
    """A plain node fed by several edges waits until every edge is resolved."""

    @pytest.fixture
    def diamond(self, make_graph):
        return make_graph(
            [
                {"id": "c", "type": "condition", "config": {"key": "x", "value": 1}},
                {"id": "left", "type": "console-log"},
                {"id": "right", "type": "console-log"},
                {"id": "join", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "c", "target": "left", "condition": "true"},
                {"id": "e2", "source": "c", "target": "right", "condition": "false"},
                {"id": "e3", "source": "left", "target": "join"},
                {"id": "e4", "source": "right", "target": "join"},
            ],
        )

    def test_join_not_blocked_by_dead_branch(self, router, diamond):
        state = ExecutionState()
        assert _settle(router, diamond, state, "c", NodeExecutionResult.success({"_conditionResult": True})) == ["left"]
        # e4 already dead through the bypassed right branch
        assert state.edge_states["e4"] == EdgeState.DEAD.value
        assert _settle(router, diamond, state, "left", NodeExecutionResult.success({"side": "L"})) == ["join"]

    def test_input_merges_fired_predecessors(self, router, diamond):
        state = ExecutionState()
        _settle(router, diamond, state, "c", NodeExecutionResult.success({"_conditionResult": True}))
        _settle(router, diamond, state, "left", NodeExecutionResult.success({"side": "L"}))
        assert router.input_for(diamond, "join", state, {}) == {"side": "L"}

    def test_entry_node_input(self, router, diamond):
        state = ExecutionState()
        assert router.input_for(diamond, "c", state, {"x": 1}) == {"x": 1}


class TestReopen:
    """Retry support: undoing a failed node's routing."""

    @pytest.fixture
    def graph(self, make_graph):
        return make_graph(
            [
                {"id": "a", "type": "console-log"},
                {"id": "b", "type": "console-log"},
                {"id": "ok", "type": "console-log"},
                {"id": "tail", "type": "console-log"},
                {"id": "recover", "type": "console-log"},
                {"id": "m", "type": "merge", "config": {"continueOnPartialFailure": True}},
            ],
            [
                {"id": "e1", "source": "a", "target": "ok"},
                {"id": "e2", "source": "ok", "target": "tail"},
                {"id": "e3", "source": "a", "target": "recover", "condition": "failed"},
                {"id": "e4", "source": "a", "target": "m"},
                {"id": "e5", "source": "b", "target": "m"},
            ],
        )

    def test_reopens_nodes_bypassed_behind_failure(self, router, graph):
        state = ExecutionState()
        assert _settle(router, graph, state, "a", NodeExecutionResult.failed("boom")) == ["recover"]
        assert state.bypassed_nodes == ["ok", "tail"]
        assert state.merge_tallies["m"]["failed"] == ["a"]

        state.clear_failure("a")
        assert router.reopen(graph, "a", state) == ["ok", "tail"]
        assert state.bypassed_nodes == []
        assert not any(e in state.edge_states for e in ("e1", "e2", "e3", "e4"))
        assert "a" not in router.merge.tally(state, "m")["failed"]

        assert _settle(router, graph, state, "a", NodeExecutionResult.success()) == ["ok"]

    def test_reopen_leaves_settled_nodes_alone(self, router, graph):
        state = ExecutionState()
        _settle(router, graph, state, "a", NodeExecutionResult.failed("boom"))
        _settle(router, graph, state, "recover", NodeExecutionResult.success())
        router.reopen(graph, "a", state)
        assert state.completed_nodes == ["recover"]
