"""Temporal Client Adapter

Owns the process-wide Temporal client and starts the two queued-dispatch
workflows:

- ExecutionAdvanceWorkflow (id `advance-{execution_id}`): one advance cycle
- TimedResumeWorkflow (id `resume-{execution_id}-{node_id}`): resume a wait step

Workflow ids are derived from the execution, so starting the same one twice
is reported as already queued instead of running the cycle twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError

from hybridflow.config import TASK_QUEUE, TEMPORAL_ADDRESS

logger = logging.getLogger(__name__)

_client: Optional[Client] = None
_client_lock = asyncio.Lock()


async def init_temporal_client() -> Optional[Client]:
    """Connect once; returns None when Temporal is unreachable.

    Inline dispatch keeps working without Temporal, so a failed connect is
    logged rather than raised.
    """
    global _client
    async with _client_lock:
        if _client is not None:
            return _client
        try:
            _client = await Client.connect(TEMPORAL_ADDRESS)
        except Exception as e:
            logger.warning(
                f"Temporal not connected ({TEMPORAL_ADDRESS}): {e}; "
                "queued dispatch and timed resume are unavailable"
            )
            return None
        logger.info(f"Temporal connected: {TEMPORAL_ADDRESS}")
        return _client


async def close_temporal_client() -> None:
    """Drop the client reference; the SDK closes its connection on collection."""
    global _client
    _client = None


async def get_client() -> Client:
    """Temporal client, connecting on first use.

    Raises:
        RuntimeError: If Temporal cannot be reached
    """
    client = _client or await init_temporal_client()
    if client is None:
        raise RuntimeError("Temporal is not connected; start the Temporal service first")
    return client


async def _start(workflow_name: str, params: Dict[str, Any], workflow_id: str) -> str:
    client = await get_client()
    try:
        await client.start_workflow(
            workflow_name,
            params,
            id=workflow_id,
            task_queue=TASK_QUEUE,
        )
    except WorkflowAlreadyStartedError:
        logger.info(f"{workflow_name} {workflow_id} is already queued")
    return workflow_id


async def start_advance(execution_id: str) -> str:
    """Queue one advance cycle of an execution. Returns the Temporal workflow id."""
    return await _start(
        "ExecutionAdvanceWorkflow",
        {"execution_id": execution_id},
        f"advance-{execution_id}",
    )


async def schedule_timed_resume(execution_id: str, node_id: str, resume_at: datetime) -> str:
    """Queue a TimedResumeWorkflow that calls resume_due once resume_at passes.

    Returns:
        Temporal workflow id
    """
    return await _start(
        "TimedResumeWorkflow",
        {
            "execution_id": execution_id,
            "node_id": node_id,
            "resume_at": resume_at.isoformat(),
        },
        f"resume-{execution_id}-{node_id}",
    )


class TemporalResumeScheduler:
    """ResumeScheduler for the engine, backed by TimedResumeWorkflow."""

    async def schedule_resume(self, execution_id: str, node_id: str, resume_at: datetime) -> None:
        workflow_id = await schedule_timed_resume(execution_id, node_id, resume_at)
        logger.info(f"Execution {execution_id}: timed resume {workflow_id} at {resume_at.isoformat()}")
