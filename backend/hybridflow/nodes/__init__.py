"""Node System: registry, dispatch, and built-in node types."""

# Import node modules to auto-register node types
from . import flow  # noqa: F401 - registers start, condition, switch, filter, merge, wait, human-approval
from . import actions  # noqa: F401 - registers analytics, discount, email, fetch, console-log, extract-query-params
from . import remote  # noqa: F401 - registers banner-form, window-alert

from .registry import (
    NODE_CLASSES,
    NODE_REGISTRY,
    BaseNodeImpl,
    NodeContext,
    NodeDefinition,
    RetryPolicy,
    create_node,
    default_environment,
    execute_node,
    get_node_definition,
    is_node_type_registered,
    list_node_types,
    list_node_types_by_category,
    register_node_type,
    retry_policy_for,
)

__all__ = [
    "NODE_CLASSES",
    "NODE_REGISTRY",
    "BaseNodeImpl",
    "NodeContext",
    "NodeDefinition",
    "RetryPolicy",
    "create_node",
    "default_environment",
    "execute_node",
    "get_node_definition",
    "is_node_type_registered",
    "list_node_types",
    "list_node_types_by_category",
    "register_node_type",
    "retry_policy_for",
]
