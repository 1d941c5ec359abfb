"""Execution engine: graph model, routing, merge coordination, state.

The state machine itself lives in `hybridflow.engine.executor`, import it
from there.
"""

from .conditions import MISSING, Condition, evaluate, resolve_key_path
from .errors import (
    ConcurrentModificationError,
    EngineError,
    ExecutionNotFoundError,
    MaxNodeRunsExceeded,
    ProtocolError,
    StateConflictError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .graph import EdgeDefinition, NodeConfig, WorkflowDefinition, validate_workflow
from .merge import MergeConfig, MergeCoordinator
from .router import Router
from .state import (
    ExecutionRecord,
    ExecutionState,
    ExecutionStatus,
    NodeExecutionResult,
    ResultStatus,
    StepRecord,
    StepStatus,
)

__all__ = [
    "MISSING",
    "Condition",
    "evaluate",
    "resolve_key_path",
    "ConcurrentModificationError",
    "EngineError",
    "ExecutionNotFoundError",
    "MaxNodeRunsExceeded",
    "ProtocolError",
    "StateConflictError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "EdgeDefinition",
    "NodeConfig",
    "WorkflowDefinition",
    "validate_workflow",
    "MergeConfig",
    "MergeCoordinator",
    "Router",
    "ExecutionRecord",
    "ExecutionState",
    "ExecutionStatus",
    "NodeExecutionResult",
    "ResultStatus",
    "StepRecord",
    "StepStatus",
]
