"""Router

Given a node's result, resolves each outgoing edge as fired or dead and
returns the downstream nodes that became eligible.

Decision value of a result:
- condition nodes: `_conditionResult` as "true" / "false"
- switch-style nodes: `_route`
- failed results: "failed"

Unconditional edges fire on success or skip. A conditional edge fires only
when its label equals the decision value. Edges labeled "failed" / "error"
fire only when the source failed.

A target is eligible once every incoming edge is resolved and at least one
fired. A target whose incoming edges are all dead is bypassed, and its own
outgoing edges die in turn, so converging branches never wait on a path
that cannot run. Merge targets defer to the MergeCoordinator.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .graph import EdgeDefinition, NodeConfig, WorkflowDefinition
from .merge import COMPLETED, FAILED, MERGE_NODE_TYPE, SKIPPED, MergeConfig, MergeCoordinator, MergeVerdict
from .state import EdgeState, ExecutionState, NodeExecutionResult, ResultStatus

logger = logging.getLogger(__name__)

CONDITION_RESULT_KEY = "_conditionResult"
ROUTE_KEY = "_route"

_EDGE_TO_OUTCOME = {
    EdgeState.FIRED: COMPLETED,
    EdgeState.FAILED: FAILED,
    EdgeState.DEAD: SKIPPED,
}


def decision_value(result: NodeExecutionResult) -> Optional[str]:
    """String form of a result's routing decision, if it has one."""
    if result.status == ResultStatus.FAILED:
        return "failed"
    output = result.output or {}
    if CONDITION_RESULT_KEY in output:
        return "true" if output[CONDITION_RESULT_KEY] else "false"
    if output.get(ROUTE_KEY) is not None:
        return str(output[ROUTE_KEY])
    return None


def _labels_match(label: str, decision: Optional[str]) -> bool:
    if decision is None:
        return False
    if label.lower() in ("true", "false"):
        return label.lower() == decision.lower()
    return label == decision


class Router:
    """Computes next-eligible nodes; mutates edge bookkeeping in ExecutionState."""

    def __init__(self, merge_coordinator: Optional[MergeCoordinator] = None):
        self.merge = merge_coordinator or MergeCoordinator()

    # ------------------------------------------------------------------
    # Edge resolution
    # ------------------------------------------------------------------

    def resolve_edge(self, graph: WorkflowDefinition, edge: EdgeDefinition, result: NodeExecutionResult) -> EdgeState:
        """Resolve one outgoing edge for a settled source result."""
        if result.status == ResultStatus.FAILED:
            if edge.is_failure_route:
                return EdgeState.FIRED
            if graph.get_node(edge.target).type == MERGE_NODE_TYPE:
                return EdgeState.FAILED
            return EdgeState.DEAD

        if edge.is_failure_route:
            return EdgeState.DEAD
        if not edge.is_conditional:
            return EdgeState.FIRED
        return EdgeState.FIRED if _labels_match(edge.condition, decision_value(result)) else EdgeState.DEAD

    def failure_is_handled(self, graph: WorkflowDefinition, node_id: str) -> bool:
        """True if a failure of node_id has somewhere to go.

        A failure is handled by an edge labeled failed/error or by an edge into
        a merge node with continueOnPartialFailure. A fail-fast merge does not
        handle it: the execution halts at the failing node.
        """
        for edge in graph.outgoing_edges(node_id):
            if edge.is_failure_route:
                return True
            target = graph.get_node(edge.target)
            if target.type == MERGE_NODE_TYPE and MergeConfig.tolerant(target.config):
                return True
        return False

    def reopen(self, graph: WorkflowDefinition, node_id: str, state: ExecutionState) -> List[str]:
        """Undo the routing of node_id so it can settle again.

        Clears its outgoing edge states and merge tally entries, then walks
        downstream through nodes that were bypassed behind it and does the
        same for them.

        Returns:
            Ids of the nodes that are no longer bypassed
        """
        reopened: List[str] = []
        sources = [node_id]
        while sources:
            source = sources.pop(0)
            for edge in graph.outgoing_edges(source):
                state.edge_states.pop(edge.id, None)
                if graph.get_node(edge.target).type == MERGE_NODE_TYPE:
                    self.merge.forget(state, edge.target, source)
                if state.clear_bypass(edge.target):
                    reopened.append(edge.target)
                    sources.append(edge.target)
        if reopened:
            logger.debug(f"Router: reopened {reopened} behind {node_id}")
        return reopened

    def next_eligible(
        self,
        graph: WorkflowDefinition,
        node_id: str,
        result: NodeExecutionResult,
        state: ExecutionState,
    ) -> List[NodeConfig]:
        """Resolve node_id's outgoing edges and return newly eligible nodes.

        Args:
            graph: Workflow graph
            node_id: Node whose result just settled
            result: The node's terminal result (success, skipped or failed)
            state: Execution state, updated in place

        Returns:
            Newly eligible nodes in declaration order
        """
        if result.status == ResultStatus.SUSPENDED:
            return []

        touched: List[str] = []
        for edge in graph.outgoing_edges(node_id):
            edge_state = self.resolve_edge(graph, edge, result)
            self._set_edge(graph, edge, edge_state, state)
            if edge.target not in touched:
                touched.append(edge.target)

        logger.debug(f"Router: node {node_id} decision={decision_value(result)} touched -> {touched}")

        eligible: List[str] = []
        for target in touched:
            self._settle_target(graph, target, state, eligible)
        return [graph.get_node(nid) for nid in graph.sort_by_position(eligible)]

    def _set_edge(self, graph: WorkflowDefinition, edge: EdgeDefinition, edge_state: EdgeState, state: ExecutionState) -> None:
        state.edge_states[edge.id] = edge_state.value
        if graph.get_node(edge.target).type == MERGE_NODE_TYPE:
            self.merge.record(state, edge.target, edge.source, _EDGE_TO_OUTCOME[edge_state])

    def _settle_target(self, graph: WorkflowDefinition, target: str, state: ExecutionState, eligible: List[str]) -> None:
        if state.is_settled(target) or target in state.ready_nodes or target in state.active_nodes or target in eligible:
            return

        node = graph.get_node(target)
        if node.type == MERGE_NODE_TYPE:
            verdict = self.merge.evaluate(graph, target, state).verdict
            if verdict == MergeVerdict.WAIT:
                return
            if verdict == MergeVerdict.BYPASS:
                self._bypass(graph, target, state, eligible)
                return
            eligible.append(target)
            return

        edge_states = [state.edge_states.get(e.id) for e in graph.incoming_edges(target)]
        if any(s is None for s in edge_states):
            return
        if EdgeState.FIRED.value in edge_states:
            eligible.append(target)
        else:
            self._bypass(graph, target, state, eligible)

    def _bypass(self, graph: WorkflowDefinition, node_id: str, state: ExecutionState, eligible: List[str]) -> None:
        if not state.mark_bypassed(node_id):
            return
        logger.debug(f"Router: node {node_id} bypassed (no live incoming edge)")
        for edge in graph.outgoing_edges(node_id):
            self._set_edge(graph, edge, EdgeState.DEAD, state)
            self._settle_target(graph, edge.target, state, eligible)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def input_for(
        self,
        graph: WorkflowDefinition,
        node_id: str,
        state: ExecutionState,
        execution_input: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Compute the input of an eligible node.

        Entry nodes receive the execution input; merge nodes receive their
        branch outputs; other nodes receive the output of the predecessor(s)
        whose edges fired, shallow-merged in edge declaration order.
        """
        node = graph.get_node(node_id)
        incoming = graph.incoming_edges(node_id)
        if not incoming:
            return dict(execution_input or {})

        if node.type == MERGE_NODE_TYPE:
            return self.merge.build_input(graph, node_id, state)

        merged: Dict[str, Any] = {}
        for edge in incoming:
            if state.edge_states.get(edge.id) != EdgeState.FIRED.value:
                continue
            output = state.step_results.get(edge.source)
            if isinstance(output, dict):
                merged.update(output)
            elif output is not None:
                merged[edge.source] = output
        return merged
