"""Repository layer for stored workflow graphs.

The engine only reads workflows; writes happen through seeding.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import WorkflowModel


class WorkflowRepository:
    """Data access layer for workflows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, workflow_id: str) -> Optional[WorkflowModel]:
        result = await self.session.execute(
            select(WorkflowModel).where(WorkflowModel.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def list(self, page: int = 1, page_size: int = 20) -> Tuple[List[WorkflowModel], int]:
        """List workflows, most recently updated first.

        Returns:
            Tuple of (workflows, total_count)
        """
        query = (
            select(WorkflowModel)
            .order_by(WorkflowModel.updated_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(query)
        workflows = list(result.scalars().all())

        count_result = await self.session.execute(select(func.count()).select_from(WorkflowModel))
        total = count_result.scalar() or 0

        return workflows, total

    async def create(
        self,
        workflow_id: str,
        name: str,
        graph_definition: Dict[str, Any],
        description: Optional[str] = None,
    ) -> WorkflowModel:
        workflow = WorkflowModel(
            id=workflow_id,
            name=name,
            description=description,
            graph_definition=graph_definition,
        )
        self.session.add(workflow)
        await self.session.flush()
        return workflow

    async def create_if_missing(
        self,
        workflow_id: str,
        name: str,
        graph_definition: Dict[str, Any],
        description: Optional[str] = None,
    ) -> bool:
        """Insert a workflow unless the id already exists. Returns True if inserted."""
        if await self.get(workflow_id) is not None:
            return False
        await self.create(workflow_id, name, graph_definition, description)
        return True
