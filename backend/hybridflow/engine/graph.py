"""Workflow Graph Model

Immutable, declarative description of a workflow: typed nodes connected by
optionally conditional edges. The execution engine only reads it.

Key Components:
- NodeConfig / EdgeDefinition / WorkflowDefinition: the graph itself
- WorkflowDefinition.from_dict: load a stored graph (accepts "data" as an
  alias of "config" and "client" as an alias of the "remote" environment)
- validate_workflow: structural checks run before an execution is created
- detect_cycles / detect_dangling_nodes: graph analysis helpers
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SERVER = "server"
REMOTE = "remote"
ENVIRONMENTS = (SERVER, REMOTE)
_ENVIRONMENT_ALIASES = {"client": REMOTE, "browser": REMOTE}

# Edge labels that fire only when the source node failed
FAILURE_LABELS = ("failed", "error")


def normalize_environment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip().lower()
    return _ENVIRONMENT_ALIASES.get(value, value)


@dataclass(frozen=True)
class NodeConfig:
    """Configuration for a single workflow node.

    Attributes:
        id: Unique node identifier
        type: Node type (selects an executor in the node registry)
        environment: "server" (run in-process) or "remote" (handed off)
        config: Node-specific configuration dictionary
        label: Optional display label
    """

    id: str
    type: str
    environment: str = SERVER
    config: Dict[str, Any] = field(default_factory=dict)
    label: Optional[str] = None

    def __post_init__(self):
        """Validate node configuration."""
        if not self.id:
            raise ValueError("node id cannot be empty")
        if not self.type:
            raise ValueError("node type cannot be empty")
        environment = normalize_environment(self.environment)
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"node {self.id}: environment must be one of {ENVIRONMENTS}, got '{self.environment}'"
            )
        object.__setattr__(self, "environment", environment)

    @property
    def is_remote(self) -> bool:
        return self.environment == REMOTE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type,
            "environment": self.environment,
            "config": dict(self.config),
        }
        if self.label:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class EdgeDefinition:
    """Definition of an edge connecting two nodes.

    Attributes:
        id: Unique edge identifier
        source: Source node ID
        target: Target node ID
        condition: Optional label that must equal the source's decision value
    """

    id: str
    source: str
    target: str
    condition: Optional[str] = None

    def __post_init__(self):
        """Validate edge definition."""
        if not self.id:
            raise ValueError("edge id cannot be empty")
        if not self.source:
            raise ValueError("source node cannot be empty")
        if not self.target:
            raise ValueError("target node cannot be empty")
        if self.source == self.target:
            raise ValueError(f"self-loop detected: {self.source} -> {self.target}")
        if self.condition is not None:
            label = str(self.condition).strip()
            if isinstance(self.condition, bool):
                label = label.lower()
            object.__setattr__(self, "condition", label or None)

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    @property
    def is_failure_route(self) -> bool:
        return self.condition is not None and self.condition.lower() in FAILURE_LABELS

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "source": self.source, "target": self.target}
        if self.condition is not None:
            data["condition"] = self.condition
        return data


@dataclass
class WorkflowDefinition:
    """Declarative workflow definition.

    Node and edge order is significant: it is the declaration order used for
    deterministic folding of parallel results and for merge predecessor order.

    Attributes:
        name: Workflow name
        nodes: Ordered node configurations
        edges: Ordered edge definitions
        id: Stored workflow id, if any
    """

    name: str
    nodes: List[NodeConfig]
    edges: List[EdgeDefinition] = field(default_factory=list)
    id: Optional[str] = None

    _nodes_by_id: Dict[str, NodeConfig] = field(init=False, repr=False, compare=False)
    _outgoing: Dict[str, List[EdgeDefinition]] = field(init=False, repr=False, compare=False)
    _incoming: Dict[str, List[EdgeDefinition]] = field(init=False, repr=False, compare=False)
    _positions: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate workflow definition and build lookup indexes."""
        if not self.name:
            raise ValueError("workflow name cannot be empty")
        if not self.nodes:
            raise ValueError("workflow must have at least one node")

        # Validate node IDs are unique
        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = {nid for nid in node_ids if node_ids.count(nid) > 1}
            raise ValueError(f"duplicate node IDs found: {duplicates}")

        # Validate edge IDs are unique
        edge_ids = [edge.id for edge in self.edges]
        if len(edge_ids) != len(set(edge_ids)):
            duplicates = {eid for eid in edge_ids if edge_ids.count(eid) > 1}
            raise ValueError(f"duplicate edge IDs found: {duplicates}")

        # Validate edges reference existing nodes
        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known:
                raise ValueError(f"edge {edge.id}: source node '{edge.source}' not found")
            if edge.target not in known:
                raise ValueError(f"edge {edge.id}: target node '{edge.target}' not found")

        self._nodes_by_id = {node.id: node for node in self.nodes}
        self._positions = {node.id: idx for idx, node in enumerate(self.nodes)}
        self._outgoing = defaultdict(list)
        self._incoming = defaultdict(list)
        for edge in self.edges:
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes_by_id

    def get_node(self, node_id: str) -> NodeConfig:
        """Return a node by id.

        Raises:
            KeyError: If the node does not exist
        """
        return self._nodes_by_id[node_id]

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        return list(self._outgoing.get(node_id, []))

    def incoming_edges(self, node_id: str) -> List[EdgeDefinition]:
        return list(self._incoming.get(node_id, []))

    def predecessors(self, node_id: str) -> List[str]:
        """Predecessor ids in edge declaration order (deduplicated)."""
        seen: List[str] = []
        for edge in self._incoming.get(node_id, []):
            if edge.source not in seen:
                seen.append(edge.source)
        return seen

    def entry_nodes(self) -> List[NodeConfig]:
        """Nodes with no incoming edges, in declaration order."""
        return [node for node in self.nodes if not self._incoming.get(node.id)]

    def position(self, node_id: str) -> int:
        return self._positions[node_id]

    def sort_by_position(self, node_ids: List[str]) -> List[str]:
        return sorted(node_ids, key=lambda nid: self._positions.get(nid, len(self._positions)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], workflow_id: Optional[str] = None) -> "WorkflowDefinition":
        """Build a definition from a stored graph dict.

        Nodes without an explicit environment take their type's registered
        default environment.

        Raises:
            ValueError: If the graph is malformed
        """
        from ..nodes.registry import default_environment

        if not isinstance(data, dict):
            raise ValueError("workflow graph must be an object")

        nodes = []
        for raw in data.get("nodes") or []:
            if not isinstance(raw, dict):
                raise ValueError("workflow node must be an object")
            config = raw.get("config")
            if config is None:
                config = raw.get("data") or {}
            node_type = raw.get("type", "")
            environment = normalize_environment(raw.get("environment")) or default_environment(node_type)
            nodes.append(
                NodeConfig(
                    id=str(raw.get("id", "")),
                    type=node_type,
                    environment=environment,
                    config=dict(config),
                    label=raw.get("label") or config.get("label"),
                )
            )

        edges = []
        for idx, raw in enumerate(data.get("edges") or []):
            if not isinstance(raw, dict):
                raise ValueError("workflow edge must be an object")
            source = str(raw.get("source", ""))
            target = str(raw.get("target", ""))
            edges.append(
                EdgeDefinition(
                    id=str(raw.get("id") or f"e{idx}-{source}-{target}"),
                    source=source,
                    target=target,
                    condition=raw.get("condition"),
                )
            )

        return cls(
            name=data.get("name") or workflow_id or "workflow",
            nodes=nodes,
            edges=edges,
            id=workflow_id or data.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


class ValidationError:
    """Workflow validation error.

    Attributes:
        code: Error code
        message: Error message
        severity: Error severity (error or warning)
        node_ids: List of affected node IDs
        context: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str,
        node_ids: List[str],
        context: Dict[str, Any],
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.node_ids = node_ids
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "node_ids": self.node_ids,
            "context": self.context,
        }


class ValidationResult:
    """Workflow validation result.

    Attributes:
        valid: Whether workflow is valid
        errors: List of validation errors
        warnings: List of validation warnings
    """

    def __init__(self, valid: bool, errors: List[ValidationError], warnings: List[ValidationError]):
        self.valid = valid
        self.errors = errors
        self.warnings = warnings

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def validate_workflow(workflow: WorkflowDefinition) -> ValidationResult:
    """Validate a workflow before execution.

    Errors (block execution): no entry node, cycles.
    Warnings: unregistered server node types and invalid node configs (both
    surface as failed steps at dispatch time), dangling nodes, nodes mixing
    conditional and unconditional outgoing edges.

    Args:
        workflow: Workflow definition to validate

    Returns:
        ValidationResult containing validation status and errors/warnings
    """
    from ..nodes.registry import create_node, is_node_type_registered

    errors = []
    warnings = []

    # 1. At least one entry node
    if not workflow.entry_nodes():
        errors.append(
            ValidationError(
                code="NO_ENTRY_NODE",
                message="Workflow has no node without incoming edges",
                severity="error",
                node_ids=[],
                context={},
            )
        )

    # 2. The engine walks DAGs; any cycle is an error
    for cycle in detect_cycles(workflow):
        errors.append(
            ValidationError(
                code="CIRCULAR_DEPENDENCY",
                message=f"Cycle detected: {' -> '.join(cycle)}",
                severity="error",
                node_ids=cycle[:-1],
                context={"cycle_path": cycle},
            )
        )

    # 3. Server node types and their configs
    for node in workflow.nodes:
        if node.is_remote:
            continue
        if not is_node_type_registered(node.type):
            warnings.append(
                ValidationError(
                    code="UNKNOWN_NODE_TYPE",
                    message=f"Node {node.id} has unregistered type '{node.type}'",
                    severity="warning",
                    node_ids=[node.id],
                    context={"node_type": node.type},
                )
            )
            continue
        try:
            config_errors = create_node(node.id, node.type, node.config).validate_config()
        except Exception as e:
            logger.error(f"Failed to validate node {node.id}: {e}")
            continue
        if config_errors:
            warnings.append(
                ValidationError(
                    code="INVALID_NODE_CONFIG",
                    message=f"Node {node.id} has an invalid configuration",
                    severity="warning",
                    node_ids=[node.id],
                    context={"node_type": node.type, "validation_errors": config_errors},
                )
            )

    # 4. Dangling nodes (no incoming or outgoing edges) in multi-node graphs
    if len(workflow.nodes) > 1:
        for node_id in detect_dangling_nodes(workflow):
            warnings.append(
                ValidationError(
                    code="DANGLING_NODE",
                    message=f"Node {node_id} is not connected to the workflow",
                    severity="warning",
                    node_ids=[node_id],
                    context={},
                )
            )

    # 5. Mixed conditional / unconditional outgoing edges
    for node in workflow.nodes:
        outgoing = workflow.outgoing_edges(node.id)
        routed = [e for e in outgoing if e.is_conditional and not e.is_failure_route]
        plain = [e for e in outgoing if not e.is_conditional]
        if routed and plain:
            warnings.append(
                ValidationError(
                    code="MIXED_EDGE_TYPES",
                    message=f"Node '{node.id}' has both conditional and unconditional edges",
                    severity="warning",
                    node_ids=[node.id],
                    context={
                        "conditional_edges": [e.id for e in routed],
                        "unconditional_edges": [e.id for e in plain],
                    },
                )
            )

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def detect_cycles(workflow: WorkflowDefinition) -> List[List[str]]:
    """Detect cycles using DFS.

    Returns:
        List of cycle paths (last element == first element)
    """
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in workflow.edges:
        adjacency[edge.source].append(edge.target)

    cycles: List[List[str]] = []
    seen_cycles = set()
    visiting: List[str] = []
    done = set()

    def dfs(node_id: str) -> None:
        visiting.append(node_id)
        for target in adjacency.get(node_id, []):
            if target in visiting:
                cycle = visiting[visiting.index(target):] + [target]
                key = frozenset(cycle)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(cycle)
            elif target not in done:
                dfs(target)
        visiting.pop()
        done.add(node_id)

    for node in workflow.nodes:
        if node.id not in done:
            dfs(node.id)

    return cycles


def detect_dangling_nodes(workflow: WorkflowDefinition) -> List[str]:
    """Return ids of nodes with neither incoming nor outgoing edges."""
    connected = set()
    for edge in workflow.edges:
        connected.add(edge.source)
        connected.add(edge.target)
    return [node.id for node in workflow.nodes if node.id not in connected]
