"""Execution state types.

Status enums for executions, steps and executor results, plus the
records the state machine persists through an ExecutionStore:

- ExecutionRecord: one workflow run (status, currentState, steps)
- StepRecord: one attempt to run one node
- ExecutionState: the graph-walk bookkeeping kept in currentState
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class ExecutionStatus(str, Enum):
    """Execution-level status."""
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"  # a server node is parked (wait, human-approval)
    WAITING = "waiting"  # a remote node was handed off
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EXECUTION_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})

RESUMABLE_EXECUTION_STATUSES = frozenset({
    ExecutionStatus.SUSPENDED,
    ExecutionStatus.WAITING,
})


class StepStatus(str, Enum):
    """ExecutionStep status."""
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STEP_STATUSES = frozenset({
    StepStatus.COMPLETED,
    StepStatus.FAILED,
    StepStatus.SKIPPED,
})

_STEP_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SUSPENDED, StepStatus.FAILED, StepStatus.SKIPPED},
    StepStatus.RUNNING: {StepStatus.SUSPENDED, StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED},
    StepStatus.SUSPENDED: {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED},
}


class ResultStatus(str, Enum):
    """Executor verdict, distinct from StepStatus."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    SUSPENDED = "suspended"


_RESULT_TO_STEP = {
    ResultStatus.SUCCESS: StepStatus.COMPLETED,
    ResultStatus.FAILED: StepStatus.FAILED,
    ResultStatus.SKIPPED: StepStatus.SKIPPED,
    ResultStatus.SUSPENDED: StepStatus.SUSPENDED,
}


class EdgeState(str, Enum):
    """Resolution of one edge within an execution."""
    FIRED = "fired"
    DEAD = "dead"  # source finished and the edge was not taken
    FAILED = "failed"  # source failed; only legal into a tolerant merge


@dataclass
class NodeExecutionResult:
    """An executor's verdict for one node invocation.

    Attributes:
        status: success | failed | skipped | suspended
        output: Output mapping handed to downstream nodes
        error: Error description when status is failed
    """

    status: ResultStatus
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def __post_init__(self):
        self.status = ResultStatus(self.status)
        if self.output is None:
            self.output = {}
        if self.status == ResultStatus.FAILED and not self.error:
            self.error = "Unknown error"

    @classmethod
    def success(cls, output: Optional[Dict[str, Any]] = None) -> "NodeExecutionResult":
        return cls(ResultStatus.SUCCESS, output or {})

    @classmethod
    def failed(cls, error: str, output: Optional[Dict[str, Any]] = None) -> "NodeExecutionResult":
        return cls(ResultStatus.FAILED, output or {}, error)

    @classmethod
    def skipped(cls, output: Optional[Dict[str, Any]] = None) -> "NodeExecutionResult":
        return cls(ResultStatus.SKIPPED, output or {})

    @classmethod
    def suspended(cls, output: Optional[Dict[str, Any]] = None) -> "NodeExecutionResult":
        return cls(ResultStatus.SUSPENDED, output or {})

    @property
    def step_status(self) -> StepStatus:
        return _RESULT_TO_STEP[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "output": self.output, "error": self.error}


@dataclass
class StepRecord:
    """One attempt to run a single node within an execution."""

    execution_id: str
    node_id: str
    node_type: str
    status: StepStatus = StepStatus.PENDING
    input: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    attempt_number: int = 1
    last_error: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    id: str = field(default_factory=_gen_uuid)

    def __post_init__(self):
        self.status = StepStatus(self.status)
        if self.attempt_number < 1:
            raise ValueError("attempt_number must be >= 1")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    def transition(
        self,
        status: StepStatus,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Move the step to a new status.

        Raises:
            ValueError: If the step is terminal or the transition is not allowed
        """
        status = StepStatus(status)
        allowed = _STEP_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise ValueError(
                f"Illegal step transition for node {self.node_id}: "
                f"{self.status.value} -> {status.value}"
            )
        self.status = status
        if output is not None:
            self.output = output
        if error is not None:
            self.last_error = error
        if status in TERMINAL_STEP_STATUSES:
            self.finished_at = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "executionId": self.execution_id,
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "attemptNumber": self.attempt_number,
            "lastError": self.last_error,
            "scheduledFor": _iso(self.scheduled_for),
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepRecord":
        return cls(
            id=data["id"],
            execution_id=data["executionId"],
            node_id=data["nodeId"],
            node_type=data.get("nodeType", ""),
            status=data["status"],
            input=data.get("input") or {},
            output=data.get("output"),
            attempt_number=data.get("attemptNumber", 1),
            last_error=data.get("lastError"),
            scheduled_for=_parse_dt(data.get("scheduledFor")),
            started_at=_parse_dt(data.get("startedAt")) or _utcnow(),
            finished_at=_parse_dt(data.get("finishedAt")),
        )


def _add(items: List[str], item: str) -> bool:
    """Append item if absent; return True if the list changed."""
    if item in items:
        return False
    items.append(item)
    return True


def _discard(items: List[str], item: str) -> None:
    if item in items:
        items.remove(item)


@dataclass
class ExecutionState:
    """Graph-walk bookkeeping persisted as an execution's currentState.

    Lists rather than sets so the state serializes to JSON in a stable order.
    """

    active_nodes: List[str] = field(default_factory=list)
    completed_nodes: List[str] = field(default_factory=list)
    step_results: Dict[str, Any] = field(default_factory=dict)
    failed_nodes: List[str] = field(default_factory=list)
    bypassed_nodes: List[str] = field(default_factory=list)
    ready_nodes: List[str] = field(default_factory=list)
    edge_states: Dict[str, str] = field(default_factory=dict)
    merge_tallies: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    node_inputs: Dict[str, Any] = field(default_factory=dict)

    def mark_ready(self, node_id: str, inputs: Dict[str, Any]) -> bool:
        self.node_inputs[node_id] = inputs
        return _add(self.ready_nodes, node_id)

    def take_ready(self) -> List[str]:
        ready, self.ready_nodes = self.ready_nodes, []
        return ready

    def mark_active(self, node_id: str) -> None:
        _add(self.active_nodes, node_id)

    def mark_completed(self, node_id: str, output: Dict[str, Any]) -> None:
        _discard(self.active_nodes, node_id)
        _discard(self.failed_nodes, node_id)
        _add(self.completed_nodes, node_id)
        self.step_results[node_id] = output

    def mark_failed(self, node_id: str, output: Optional[Dict[str, Any]] = None) -> None:
        _discard(self.active_nodes, node_id)
        _add(self.failed_nodes, node_id)
        if output:
            self.step_results[node_id] = output

    def mark_bypassed(self, node_id: str) -> bool:
        return _add(self.bypassed_nodes, node_id)

    def clear_failure(self, node_id: str) -> None:
        _discard(self.failed_nodes, node_id)

    def clear_bypass(self, node_id: str) -> bool:
        """Un-bypass a node. Returns True if it was bypassed."""
        if node_id not in self.bypassed_nodes:
            return False
        self.bypassed_nodes.remove(node_id)
        return True

    def is_settled(self, node_id: str) -> bool:
        """True once the node completed, failed or was bypassed."""
        return (
            node_id in self.completed_nodes
            or node_id in self.failed_nodes
            or node_id in self.bypassed_nodes
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeNodes": list(self.active_nodes),
            "completedNodes": list(self.completed_nodes),
            "stepResults": dict(self.step_results),
            "failedNodes": list(self.failed_nodes),
            "bypassedNodes": list(self.bypassed_nodes),
            "readyNodes": list(self.ready_nodes),
            "edgeStates": dict(self.edge_states),
            "mergeTallies": {k: {s: list(v) for s, v in t.items()} for k, t in self.merge_tallies.items()},
            "nodeInputs": dict(self.node_inputs),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExecutionState":
        data = data or {}
        return cls(
            active_nodes=list(data.get("activeNodes", [])),
            completed_nodes=list(data.get("completedNodes", [])),
            step_results=dict(data.get("stepResults", {})),
            failed_nodes=list(data.get("failedNodes", [])),
            bypassed_nodes=list(data.get("bypassedNodes", [])),
            ready_nodes=list(data.get("readyNodes", [])),
            edge_states=dict(data.get("edgeStates", {})),
            merge_tallies={
                k: {s: list(v) for s, v in t.items()}
                for k, t in data.get("mergeTallies", {}).items()
            },
            node_inputs=dict(data.get("nodeInputs", {})),
        )


@dataclass
class ExecutionRecord:
    """Mutable record of one workflow run.

    Owned by the execution state machine; `version` backs the optimistic
    concurrency check in ExecutionStore.save_execution.
    """

    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    input: Dict[str, Any] = field(default_factory=dict)
    state: ExecutionState = field(default_factory=ExecutionState)
    steps: List[StepRecord] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    version: int = 0
    id: str = field(default_factory=_gen_uuid)

    def __post_init__(self):
        self.status = ExecutionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    def steps_for(self, node_id: str) -> List[StepRecord]:
        return [s for s in self.steps if s.node_id == node_id]

    def latest_step(self, node_id: str) -> Optional[StepRecord]:
        steps = self.steps_for(node_id)
        return max(steps, key=lambda s: s.attempt_number) if steps else None

    def next_attempt_number(self, node_id: str) -> int:
        latest = self.latest_step(node_id)
        return latest.attempt_number + 1 if latest else 1

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "total": len(self.steps),
            "completed": sum(1 for s in self.steps if s.status == StepStatus.COMPLETED),
            "failed": sum(1 for s in self.steps if s.status == StepStatus.FAILED),
        }

    def snapshot(self, total_nodes: Optional[int] = None) -> Dict[str, Any]:
        """Status snapshot returned by getExecutionStatus."""
        snapshot = {
            "id": self.id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "lastError": self.last_error,
            "version": self.version,
            "input": self.input,
            "currentState": self.state.to_dict(),
            "counts": self.counts,
            "steps": [s.to_dict() for s in sorted(self.steps, key=lambda s: s.started_at)],
        }
        if total_nodes:
            settled = len(self.state.completed_nodes) + len(self.state.bypassed_nodes)
            snapshot["progress"] = round(100 * min(settled, total_nodes) / total_nodes)
        return snapshot
