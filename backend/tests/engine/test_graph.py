"""Unit tests for the workflow graph model and validation

Tests cover:
- Structural checks in NodeConfig / EdgeDefinition / WorkflowDefinition
- Loading stored graphs (aliases, default environments)
- validate_workflow errors and warnings
- Cycle detection
"""

import pytest

from hybridflow.engine.graph import (
    EdgeDefinition,
    NodeConfig,
    WorkflowDefinition,
    detect_cycles,
    validate_workflow,
)

# Import node types to ensure registration
import hybridflow.nodes  # noqa: F401


class TestNodeConfig:

    def test_defaults_to_server(self):
        node = NodeConfig(id="1", type="start")
        assert node.environment == "server"
        assert node.is_remote is False

    def test_client_alias(self):
        node = NodeConfig(id="3", type="banner-form", environment="client")
        assert node.environment == "remote"
        assert node.is_remote is True

    def test_unknown_environment(self):
        with pytest.raises(ValueError, match="environment must be one of"):
            NodeConfig(id="1", type="start", environment="edge")

    def test_empty_id(self):
        with pytest.raises(ValueError, match="node id cannot be empty"):
            NodeConfig(id="", type="start")


class TestEdgeDefinition:

    def test_self_loop(self):
        with pytest.raises(ValueError, match="self-loop"):
            EdgeDefinition(id="e", source="a", target="a")

    def test_boolean_label_normalized(self):
        edge = EdgeDefinition(id="e", source="a", target="b", condition=True)
        assert edge.condition == "true"

    def test_blank_label_is_unconditional(self):
        edge = EdgeDefinition(id="e", source="a", target="b", condition="  ")
        assert edge.is_conditional is False

    def test_failure_route(self):
        assert EdgeDefinition(id="e", source="a", target="b", condition="error").is_failure_route
        assert not EdgeDefinition(id="e", source="a", target="b", condition="true").is_failure_route


class TestWorkflowDefinition:

    def test_duplicate_node_ids(self):
        with pytest.raises(ValueError, match="duplicate node IDs"):
            WorkflowDefinition(
                name="wf",
                nodes=[NodeConfig(id="a", type="start"), NodeConfig(id="a", type="start")],
            )

    def test_edge_to_unknown_node(self):
        with pytest.raises(ValueError, match="target node 'b' not found"):
            WorkflowDefinition(
                name="wf",
                nodes=[NodeConfig(id="a", type="start")],
                edges=[EdgeDefinition(id="e", source="a", target="b")],
            )

    def test_indexes(self, ppc_graph):
        assert [n.id for n in ppc_graph.entry_nodes()] == ["1"]
        assert [e.target for e in ppc_graph.outgoing_edges("2")] == ["3", "8"]
        assert ppc_graph.predecessors("4") == ["3"]
        assert ppc_graph.sort_by_position(["7", "2", "5"]) == ["2", "5", "7"]


class TestFromDict:

    def test_ppc_template(self, ppc_graph):
        assert ppc_graph.id == "ppc-landing"
        assert ppc_graph.get_node("3").is_remote
        assert ppc_graph.get_node("6").is_remote
        assert not ppc_graph.get_node("7").is_remote
        assert ppc_graph.get_node("2").config["key"] == "query.utm_source"

    def test_registered_environment_default(self, make_graph):
        graph = make_graph([{"id": "a", "type": "window-alert", "config": {"message": "hi"}}])
        assert graph.get_node("a").is_remote

    def test_data_alias_for_config(self, make_graph):
        graph = make_graph([{"id": "a", "type": "console-log", "data": {"message": "hi"}}])
        assert graph.get_node("a").config == {"message": "hi"}

    def test_generated_edge_ids(self, make_graph):
        graph = make_graph(
            [{"id": "a", "type": "start"}, {"id": "b", "type": "console-log"}],
            [{"source": "a", "target": "b"}],
        )
        assert graph.edges[0].id == "e0-a-b"

    def test_malformed(self):
        with pytest.raises(ValueError):
            WorkflowDefinition.from_dict({"nodes": ["not-a-node"]}, workflow_id="wf")


class TestValidateWorkflow:

    def test_valid_template(self, ppc_graph):
        result = validate_workflow(ppc_graph)
        assert result.valid
        assert result.errors == []

    def test_cycle_is_error(self, make_graph):
        graph = make_graph(
            [{"id": "a", "type": "start"}, {"id": "b", "type": "console-log"}, {"id": "c", "type": "console-log"}],
            [
                {"id": "e1", "source": "a", "target": "b"},
                {"id": "e2", "source": "b", "target": "c"},
                {"id": "e3", "source": "c", "target": "b"},
            ],
        )
        result = validate_workflow(graph)
        assert not result.valid
        assert result.errors[0].code == "CIRCULAR_DEPENDENCY"

    def test_no_entry_node(self, make_graph):
        graph = make_graph(
            [{"id": "a", "type": "console-log"}, {"id": "b", "type": "console-log"}],
            [{"id": "e1", "source": "a", "target": "b"}, {"id": "e2", "source": "b", "target": "a"}],
        )
        codes = [e.code for e in validate_workflow(graph).errors]
        assert "NO_ENTRY_NODE" in codes

    def test_unknown_type_is_warning(self, make_graph):
        graph = make_graph([{"id": "a", "type": "teleport"}])
        result = validate_workflow(graph)
        assert result.valid
        assert result.warnings[0].code == "UNKNOWN_NODE_TYPE"

    def test_remote_types_not_checked(self, make_graph):
        graph = make_graph([{"id": "a", "type": "custom-widget", "environment": "remote"}])
        assert validate_workflow(graph).warnings == []

    def test_invalid_config_is_warning(self, make_graph):
        graph = make_graph([{"id": "a", "type": "condition", "config": {}}])
        result = validate_workflow(graph)
        assert [w.code for w in result.warnings] == ["INVALID_NODE_CONFIG"]

    def test_mixed_edges_warning(self, make_graph):
        graph = make_graph(
            [
                {"id": "a", "type": "condition", "config": {"key": "x", "value": 1}},
                {"id": "b", "type": "console-log"},
                {"id": "c", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "a", "target": "b", "condition": "true"},
                {"id": "e2", "source": "a", "target": "c"},
            ],
        )
        codes = [w.code for w in validate_workflow(graph).warnings]
        assert "MIXED_EDGE_TYPES" in codes

    def test_to_dict(self, make_graph):
        result = validate_workflow(make_graph([{"id": "a", "type": "teleport"}]))
        data = result.to_dict()
        assert data["valid"] is True
        assert data["warnings"][0]["node_ids"] == ["a"]


class TestGraphAnalysis:

    def test_detect_cycles_none(self, ppc_graph):
        assert detect_cycles(ppc_graph) == []
