"""Temporal Workflow Definitions"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from .activities import advance_execution_activity, resume_due_activity
    from ..config import TASK_QUEUE
    from ..settings import ADVANCE_ACTIVITY_TIMEOUT_MINUTES, RESUME_ACTIVITY_TIMEOUT_MINUTES


@workflow.defn
class ExecutionAdvanceWorkflow:
    """Runs the advance cycle of one execution on a worker.

    Started by the execute route when DISPATCH_MODE=temporal.
    """

    def __init__(self) -> None:
        self._result: dict = {}

    @workflow.run
    async def run(self, params: dict) -> dict:
        """Advance an execution.

        Args:
            params: Dict with keys:
                - execution_id: Execution created by the API
        """
        self._result = await workflow.execute_activity(
            advance_execution_activity,
            params,
            schedule_to_close_timeout=timedelta(minutes=ADVANCE_ACTIVITY_TIMEOUT_MINUTES),
        )
        return self._result

    @workflow.query
    def get_result(self) -> dict:
        return self._result


@workflow.defn
class TimedResumeWorkflow:
    """Sleeps until a wait step is due, then resumes the execution."""

    def __init__(self) -> None:
        self._result: dict = {}

    @workflow.run
    async def run(self, params: dict) -> dict:
        """Resume a wait node once due.

        Args:
            params: Dict with keys:
                - execution_id: Suspended execution
                - node_id: Wait node to resume
                - resume_at: ISO timestamp the step is scheduled for
        """
        resume_at = datetime.fromisoformat(params["resume_at"])
        delay = (resume_at - workflow.now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        self._result = await workflow.execute_activity(
            resume_due_activity,
            {
                "execution_id": params["execution_id"],
                "node_id": params.get("node_id"),
                "now": resume_at.isoformat(),
            },
            schedule_to_close_timeout=timedelta(minutes=RESUME_ACTIVITY_TIMEOUT_MINUTES),
        )
        return self._result

    @workflow.query
    def get_result(self) -> dict:
        return self._result


__all__ = ["ExecutionAdvanceWorkflow", "TimedResumeWorkflow", "TASK_QUEUE"]
