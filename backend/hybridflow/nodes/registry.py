"""Node Executor Registry

Closed registry mapping a node type string to its executor class, plus the
single dispatch entry point the execution engine uses.

Key Components:
- NodeDefinition: Metadata for node types (incl. environment and retry policy)
- BaseNodeImpl: Base class; subclasses implement `execute(inputs, context)`
- register_node_type: Decorator for registering node types
- execute_node: Dispatch that always returns a NodeExecutionResult

Dispatch never raises: unknown types and executor exceptions become
`failed` results.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from ..engine.state import NodeExecutionResult
from ..settings import NODE_DEFAULT_MAX_ATTEMPTS, NODE_RETRY_BASE_DELAY, NODE_RETRY_MAX_DELAY

logger = logging.getLogger(__name__)

# Type variable for node classes
T = TypeVar("T", bound="BaseNodeImpl")

NodeOutput = Union[NodeExecutionResult, Dict[str, Any], None]


@dataclass
class RetryPolicy:
    """Per-node-type retry policy for server executors.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_seconds: Delay before the second attempt
        backoff_multiplier: Growth factor for later attempts
    """

    max_attempts: int = NODE_DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = NODE_RETRY_BASE_DELAY
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")

    def delay_for(self, attempt_number: int) -> float:
        """Delay before running `attempt_number` (2 = first retry)."""
        if attempt_number <= 1:
            return 0.0
        delay = self.backoff_seconds * (self.backoff_multiplier ** (attempt_number - 2))
        return min(delay, NODE_RETRY_MAX_DELAY)

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "RetryPolicy":
        """Apply a node's `config.retry` ({maxAttempts, backoffSeconds})."""
        if not isinstance(overrides, dict):
            return self
        return RetryPolicy(
            max_attempts=int(overrides.get("maxAttempts", self.max_attempts)),
            backoff_seconds=float(overrides.get("backoffSeconds", self.backoff_seconds)),
            backoff_multiplier=float(overrides.get("backoffMultiplier", self.backoff_multiplier)),
        )


@dataclass
class NodeDefinition:
    """Metadata definition for a node type.

    Attributes:
        node_type: Unique identifier for the node type (e.g., "discount")
        display_name: Human-readable name
        description: Brief description of node functionality
        category: Category for grouping (e.g., "flow", "business", "ui")
        input_schema: JSON schema for configuration validation
        output_schema: JSON schema for output structure definition
        environment: Default environment for nodes of this type
        retry: Retry policy for server executions
        icon: Optional icon identifier
        color: Optional color code
    """

    node_type: str
    display_name: str
    description: str
    category: str
    input_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    environment: str = "server"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    icon: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self):
        """Validate node definition after initialization."""
        if not self.node_type:
            raise ValueError("node_type cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if not isinstance(self.input_schema, dict):
            raise ValueError("input_schema must be a dictionary")
        if not isinstance(self.output_schema, dict):
            raise ValueError("output_schema must be a dictionary")
        if self.environment not in ("server", "remote"):
            raise ValueError("environment must be 'server' or 'remote'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.node_type,
            "displayName": self.display_name,
            "description": self.description,
            "category": self.category,
            "environment": self.environment,
            "inputSchema": self.input_schema,
            "outputSchema": self.output_schema,
            "retry": {
                "maxAttempts": self.retry.max_attempts,
                "backoffSeconds": self.retry.backoff_seconds,
            },
            "icon": self.icon,
            "color": self.color,
        }


@dataclass
class NodeContext:
    """Execution context handed to executors alongside their input.

    Attributes:
        workflow_id: Workflow being executed
        execution_id: Execution the step belongs to
        node_id: Node being executed
        attempt_number: Attempt number of the current step
        results: Outputs of nodes that already completed, keyed by node id
        execution_input: Input the execution was started with
    """

    workflow_id: str
    execution_id: str
    node_id: str
    attempt_number: int = 1
    results: Dict[str, Any] = field(default_factory=dict)
    execution_input: Dict[str, Any] = field(default_factory=dict)


class BaseNodeImpl(ABC):
    """Abstract base class providing common node functionality."""

    def __init__(self, node_id: str, node_type: str, config: Dict[str, Any]):
        """Initialize base node.

        Args:
            node_id: Unique identifier for this node instance
            node_type: Type identifier matching NodeDefinition
            config: Template-resolved configuration for this invocation
        """
        self.node_id = node_id
        self.node_type = node_type
        self.config = config or {}

    @abstractmethod
    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeOutput:
        """Execute the node's logic. Must be implemented by subclasses."""
        pass

    def validate_config(self) -> List[Dict[str, str]]:
        """Default validation: required fields from the input schema."""
        errors = []

        definition = NODE_REGISTRY.get(self.node_type)
        if not definition:
            errors.append({
                "field": "node_type",
                "error": f"Unknown node type: {self.node_type}"
            })
            return errors

        required_fields = definition.input_schema.get("required", [])
        for field_name in required_fields:
            if field_name not in self.config:
                errors.append({
                    "field": field_name,
                    "error": f"Required field '{field_name}' is missing"
                })

        return errors


# Global registry for node types
NODE_REGISTRY: Dict[str, NodeDefinition] = {}
NODE_CLASSES: Dict[str, Type[BaseNodeImpl]] = {}


def register_node_type(
    node_type: str,
    display_name: str,
    description: str,
    category: str,
    input_schema: Dict[str, Any],
    output_schema: Dict[str, Any],
    environment: str = "server",
    retry: Optional[RetryPolicy] = None,
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register a node type.

    Registers both the node definition metadata and the executor class.

    Raises:
        ValueError: If the type is already registered or the definition is invalid

    Example:
        @register_node_type(
            node_type="discount",
            display_name="Discount Code",
            description="Generates a discount code",
            category="business",
            input_schema={"type": "object", "properties": {...}},
            output_schema={"type": "object", "properties": {...}},
        )
        class DiscountNode(BaseNodeImpl):
            async def execute(self, inputs, context):
                return {"code": "..."}
    """

    def decorator(cls: Type[T]) -> Type[T]:
        definition = NodeDefinition(
            node_type=node_type,
            display_name=display_name,
            description=description,
            category=category,
            input_schema=input_schema,
            output_schema=output_schema,
            environment=environment,
            retry=retry or RetryPolicy(),
            icon=icon,
            color=color,
        )

        if node_type in NODE_CLASSES:
            raise ValueError(f"Node type already registered: {node_type}")

        NODE_REGISTRY[node_type] = definition
        NODE_CLASSES[node_type] = cls

        logger.debug(f"Registered node type: {node_type} ({display_name}, {environment})")

        return cls

    return decorator


def unregister_node_type(node_type: str) -> None:
    """Remove a node type (used by tests registering throwaway types)."""
    NODE_REGISTRY.pop(node_type, None)
    NODE_CLASSES.pop(node_type, None)


def create_node(
    node_id: str,
    node_type: str,
    config: Dict[str, Any],
) -> BaseNodeImpl:
    """Factory function to create a node executor instance.

    Raises:
        ValueError: If node_type is not registered
    """
    if node_type not in NODE_CLASSES:
        available_types = sorted(NODE_CLASSES.keys())
        raise ValueError(
            f"Unknown node type: {node_type}. "
            f"Available types: {available_types}"
        )

    node_class = NODE_CLASSES[node_type]
    return node_class(node_id=node_id, node_type=node_type, config=config)


def _coerce_result(node_id: str, output: NodeOutput) -> NodeExecutionResult:
    if isinstance(output, NodeExecutionResult):
        return output
    if output is None:
        return NodeExecutionResult.success({})
    if isinstance(output, dict):
        return NodeExecutionResult.success(output)
    return NodeExecutionResult.failed(
        f"Node {node_id} returned unsupported result type {type(output).__name__}"
    )


async def execute_node(
    node_id: str,
    node_type: str,
    config: Dict[str, Any],
    inputs: Dict[str, Any],
    context: NodeContext,
) -> NodeExecutionResult:
    """Dispatch a server node to its executor.

    Never raises: an unknown type or an executor exception yields a failed
    result carrying a descriptive error.
    """
    if node_type not in NODE_CLASSES:
        logger.error(f"Node {node_id}: unknown node type '{node_type}'")
        return NodeExecutionResult.failed(f"Unknown node type: {node_type}")

    try:
        executor = create_node(node_id, node_type, config)
        output = await executor.execute(inputs, context)
    except Exception as e:
        logger.exception(f"Node {node_id} ({node_type}) raised: {e}")
        return NodeExecutionResult.failed(str(e) or e.__class__.__name__)

    return _coerce_result(node_id, output)


def get_node_definition(node_type: str) -> Optional[NodeDefinition]:
    """Get the definition for a registered node type."""
    return NODE_REGISTRY.get(node_type)


def list_node_types() -> List[NodeDefinition]:
    """List all registered node types."""
    return list(NODE_REGISTRY.values())


def list_node_types_by_category(category: str) -> List[NodeDefinition]:
    """List all registered node types in a specific category."""
    return [
        definition
        for definition in NODE_REGISTRY.values()
        if definition.category == category
    ]


def is_node_type_registered(node_type: str) -> bool:
    """Check if a node type is registered."""
    return node_type in NODE_REGISTRY


def default_environment(node_type: str) -> str:
    """Registered default environment of a type; "server" when unknown."""
    definition = NODE_REGISTRY.get(node_type)
    return definition.environment if definition else "server"


def retry_policy_for(node_type: str, config: Optional[Dict[str, Any]] = None) -> RetryPolicy:
    """Effective retry policy: the type's policy with per-node overrides."""
    definition = NODE_REGISTRY.get(node_type)
    policy = definition.retry if definition else RetryPolicy()
    return policy.with_overrides((config or {}).get("retry"))
