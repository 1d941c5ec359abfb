"""Execution persistence seam.

The engine is stateless between calls: every operation loads the execution
from an ExecutionStore, mutates it, and saves it back. `save_execution`
performs an optimistic version check so two writers never silently
overwrite each other.

- ExecutionStore: protocol implemented here (in-memory) and by
  app.repositories.execution.SqlExecutionStore (SQLAlchemy)
- ExecutionLockManager: in-process serialization of cycles per execution id
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Protocol, Set, Tuple

from .errors import ConcurrentModificationError
from .graph import WorkflowDefinition
from .state import ExecutionRecord

logger = logging.getLogger(__name__)


class ExecutionStore(Protocol):
    """Storage used by the execution state machine."""

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        ...

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist a new execution; sets record.version to 1."""
        ...

    async def load_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        ...

    async def save_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist record if the stored version equals record.version.

        Bumps record.version on success.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        ...

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[ExecutionRecord], int]:
        ...


class InMemoryExecutionStore:
    """Dict-backed ExecutionStore.

    Records are deep-copied in and out, so callers never share mutable state
    with the store (the same isolation a database gives).
    """

    def __init__(self, workflows: Optional[List[WorkflowDefinition]] = None):
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._executions: Dict[str, ExecutionRecord] = {}
        for workflow in workflows or []:
            self.add_workflow(workflow)

    def add_workflow(self, workflow: WorkflowDefinition, workflow_id: Optional[str] = None) -> str:
        workflow_id = workflow_id or workflow.id or workflow.name
        self._workflows[workflow_id] = workflow
        return workflow_id

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        if record.id in self._executions:
            raise ValueError(f"Execution already exists: {record.id}")
        record.version = 1
        self._executions[record.id] = copy.deepcopy(record)
        return record

    async def load_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        stored = self._executions.get(execution_id)
        return copy.deepcopy(stored) if stored else None

    async def save_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        stored = self._executions.get(record.id)
        if stored is None or stored.version != record.version:
            raise ConcurrentModificationError(record.id, record.version)
        record.version += 1
        self._executions[record.id] = copy.deepcopy(record)
        return record

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[ExecutionRecord], int]:
        records = list(self._executions.values())
        if workflow_id:
            records = [r for r in records if r.workflow_id == workflow_id]
        if status:
            statuses = {s.strip() for s in status.split(",") if s.strip()}
            records = [r for r in records if r.status.value in statuses]
        records.sort(key=lambda r: r.started_at, reverse=True)
        start = (page - 1) * page_size
        return [copy.deepcopy(r) for r in records[start:start + page_size]], len(records)


class ExecutionLockManager:
    """Per-execution asyncio locks plus cooperative cancellation flags.

    Locks are created on demand and dropped once nobody holds or waits on
    them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self._cancel_requested: Set[str] = set()

    @asynccontextmanager
    async def hold(self, execution_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(execution_id, asyncio.Lock())
        self._users[execution_id] = self._users.get(execution_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[execution_id] -= 1
            if self._users[execution_id] == 0:
                del self._users[execution_id]
                self._locks.pop(execution_id, None)

    def is_locked(self, execution_id: str) -> bool:
        lock = self._locks.get(execution_id)
        return lock is not None and lock.locked()

    def request_cancel(self, execution_id: str) -> None:
        self._cancel_requested.add(execution_id)

    def cancel_requested(self, execution_id: str) -> bool:
        return execution_id in self._cancel_requested

    def clear_cancel(self, execution_id: str) -> None:
        self._cancel_requested.discard(execution_id)


# Shared by every engine in the process
default_lock_manager = ExecutionLockManager()
