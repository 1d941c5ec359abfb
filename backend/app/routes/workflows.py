"""Read-only workflow endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hybridflow.engine.errors import WorkflowNotFoundError

from ..database import get_session
from ..models.schemas import PagedWorkflowsResponse, WorkflowResponse
from ..repositories.workflow import WorkflowRepository

router = APIRouter(prefix="/api/v2/workflows", tags=["workflows"])


def _workflow_to_response(wf) -> WorkflowResponse:
    """Convert ORM WorkflowModel to API response."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description,
        graph_definition=wf.graph_definition or {},
        created_at=wf.created_at.isoformat() if wf.created_at else "",
        updated_at=wf.updated_at.isoformat() if wf.updated_at else "",
    )


@router.get("", response_model=PagedWorkflowsResponse)
async def list_workflows(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """List stored workflows with pagination."""
    repo = WorkflowRepository(session)
    workflows, total = await repo.list(page=page, page_size=page_size)
    return PagedWorkflowsResponse(
        items=[_workflow_to_response(wf) for wf in workflows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Get a single workflow by ID."""
    repo = WorkflowRepository(session)
    workflow = await repo.get(workflow_id)
    if not workflow:
        raise WorkflowNotFoundError(workflow_id)
    return _workflow_to_response(workflow)
