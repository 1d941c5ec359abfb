"""Execution endpoints: execute, status, resume, cancel, retry, list.

Engine errors raised here are turned into `{error}` responses by the
handler registered in app.main.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hybridflow.config import DISPATCH_MODE
from hybridflow.engine.executor import ExecutionEngine
from hybridflow.remote.protocol import EngineResponse, ExecuteRequest, ResumeRequest

from ..database import get_session
from ..models.schemas import PagedExecutionsResponse
from ..repositories.execution import SqlExecutionStore
from ..temporal_adapter import TemporalResumeScheduler, start_advance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2", tags=["executions"])


def get_engine(session: AsyncSession = Depends(get_session)) -> ExecutionEngine:
    """FastAPI dependency: an engine over the request's session."""
    scheduler = TemporalResumeScheduler() if DISPATCH_MODE == "temporal" else None
    return ExecutionEngine(SqlExecutionStore(session), scheduler=scheduler)


@router.post("/workflows/{workflow_id}/execute", response_model=EngineResponse)
async def execute_workflow(
    workflow_id: str,
    payload: Optional[ExecuteRequest] = None,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Start an execution of a stored workflow.

    Inline dispatch runs the first advance cycle within the request; temporal
    dispatch hands it to a worker and answers `pending`.
    """
    input_data = payload.input if payload else {}

    if DISPATCH_MODE != "temporal":
        return await engine.execute_workflow(workflow_id, input_data)

    record = await engine.create_execution(workflow_id, input_data)
    try:
        await start_advance(record.id)
    except Exception as exc:
        raise HTTPException(
            status_code=503,
            detail=f"Unable to queue execution {record.id}: {exc}",
        ) from exc
    return EngineResponse(
        execution_id=record.id,
        status=record.status.value,
        message="Execution queued",
    )


@router.get("/executions", response_model=PagedExecutionsResponse)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Filter by workflow"),
    status: Optional[str] = Query(None, description="Filter by status (comma-separated)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    engine: ExecutionEngine = Depends(get_engine),
):
    """List executions with pagination."""
    return await engine.list_executions(
        workflow_id=workflow_id, status=status, page=page, page_size=page_size
    )


@router.get("/executions/{execution_id}")
async def get_execution_status(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Status snapshot: status, steps, currentState, counts, progress."""
    return await engine.get_execution_status(execution_id)


@router.post("/executions/{execution_id}/resume", response_model=EngineResponse)
async def resume_execution(
    execution_id: str,
    payload: ResumeRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Deliver the result of a handed-off (or parked) node."""
    return await engine.resume_execution(
        execution_id, payload.node_id, payload.data, error=payload.error
    )


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Cancel a non-terminal execution."""
    return await engine.cancel_execution(execution_id)


@router.post("/executions/{execution_id}/retry", response_model=EngineResponse)
async def retry_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Retry the failed nodes of a failed execution."""
    return await engine.retry_execution(execution_id)
