"""Temporal Activities for queued execution dispatch

Both activities run one engine operation against the database, exactly as
the inline HTTP path does, and return the EngineResponse wire dict.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from temporalio import activity

logger = logging.getLogger("hybridflow.temporal.activities")


def _build_engine(session):
    from app.repositories.execution import SqlExecutionStore
    from app.temporal_adapter import TemporalResumeScheduler

    from ..engine.executor import ExecutionEngine

    return ExecutionEngine(SqlExecutionStore(session), scheduler=TemporalResumeScheduler())


@activity.defn
async def advance_execution_activity(params: dict) -> dict:
    """Run one advance cycle of an execution.

    Args:
        params: Dict with keys:
            - execution_id: Execution to advance

    Returns:
        EngineResponse wire dict
    """
    from app.database import get_session_ctx

    execution_id = params["execution_id"]
    logger.info(f"Execution {execution_id}: advance activity started")

    async with get_session_ctx() as session:
        response = await _build_engine(session).advance(execution_id)

    logger.info(f"Execution {execution_id}: advance activity finished ({response.status})")
    return response.to_wire()


@activity.defn
async def resume_due_activity(params: dict) -> dict:
    """Resume an execution's wait steps that are due.

    Args:
        params: Dict with keys:
            - execution_id: Execution to resume
            - now: Optional ISO timestamp used as the current time

    Returns:
        EngineResponse wire dict
    """
    from app.database import get_session_ctx

    execution_id = params["execution_id"]
    now: Optional[datetime] = datetime.fromisoformat(params["now"]) if params.get("now") else None
    logger.info(f"Execution {execution_id}: timed resume of {params.get('node_id')}")

    async with get_session_ctx() as session:
        response = await _build_engine(session).resume_due(execution_id, now=now)

    return response.to_wire()
