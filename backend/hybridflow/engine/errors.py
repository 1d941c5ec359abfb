"""Engine error taxonomy.

Transport layers map these to responses; node executor failures never
surface here (they become failed NodeExecutionResults).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .graph import ValidationResult


class EngineError(Exception):
    """Base class for errors raised by the execution engine."""
    pass


class WorkflowNotFoundError(EngineError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class ExecutionNotFoundError(EngineError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class WorkflowValidationError(EngineError):
    """Raised when a workflow graph is structurally invalid.

    Raised before any execution state is created.
    """

    def __init__(self, message: str, result: Optional["ValidationResult"] = None):
        self.result = result
        super().__init__(message)


class StateConflictError(EngineError):
    """Operation is not allowed in the execution's current status."""
    pass


class ConcurrentModificationError(StateConflictError):
    """Persisted execution changed between load and save."""

    def __init__(self, execution_id: str, expected_version: int):
        self.execution_id = execution_id
        self.expected_version = expected_version
        super().__init__(
            f"Execution {execution_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class ProtocolError(EngineError):
    """Malformed handoff call, e.g. resume for a node the graph does not have."""
    pass


class MaxNodeRunsExceeded(EngineError):
    """Raised when one advance cycle runs more nodes than allowed."""

    def __init__(self, execution_id: str, runs: int, limit: int):
        self.execution_id = execution_id
        self.runs = runs
        self.limit = limit
        super().__init__(
            f"Execution {execution_id} exceeded max node runs per cycle: {runs}/{limit}"
        )
