"""Repository layer for execution persistence.

SqlExecutionStore implements hybridflow's ExecutionStore protocol on top of
the executions / execution_steps tables. Every save is an optimistic
`UPDATE ... WHERE version = :expected` followed by a step upsert and a
commit, so each engine transition is durable on its own.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.db import ExecutionModel, ExecutionStepModel
from app.repositories.workflow import WorkflowRepository
from hybridflow.engine.errors import ConcurrentModificationError, WorkflowValidationError
from hybridflow.engine.graph import WorkflowDefinition
from hybridflow.engine.state import ExecutionRecord, ExecutionState, StepRecord

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _step_from_model(model: ExecutionStepModel) -> StepRecord:
    return StepRecord(
        id=model.id,
        execution_id=model.execution_id,
        node_id=model.node_id,
        node_type=model.node_type,
        status=model.status,
        input=model.input_data or {},
        output=model.output_data,
        attempt_number=model.attempt_number,
        last_error=model.last_error,
        scheduled_for=_aware(model.scheduled_for),
        started_at=_aware(model.started_at),
        finished_at=_aware(model.finished_at),
    )


def _apply_step(model: ExecutionStepModel, step: StepRecord) -> None:
    model.status = step.status.value
    model.input_data = step.input
    model.output_data = step.output
    model.attempt_number = step.attempt_number
    model.last_error = step.last_error
    model.scheduled_for = step.scheduled_for
    model.started_at = step.started_at
    model.finished_at = step.finished_at


def _record_from_model(model: ExecutionModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=model.id,
        workflow_id=model.workflow_id,
        status=model.status,
        input=model.input_data or {},
        state=ExecutionState.from_dict(model.current_state),
        steps=[_step_from_model(s) for s in model.steps],
        started_at=_aware(model.started_at),
        finished_at=_aware(model.finished_at),
        last_error=model.last_error,
        version=model.version,
    )


class SqlExecutionStore:
    """ExecutionStore backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        workflow = await WorkflowRepository(self.session).get(workflow_id)
        if workflow is None:
            return None
        graph = dict(workflow.graph_definition or {})
        graph.setdefault("name", workflow.name)
        try:
            return WorkflowDefinition.from_dict(graph, workflow_id=workflow.id)
        except ValueError as e:
            raise WorkflowValidationError(f"Workflow {workflow_id} graph is malformed: {e}") from e

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        record.version = 1
        model = ExecutionModel(
            id=record.id,
            workflow_id=record.workflow_id,
            status=record.status.value,
            version=record.version,
            input_data=record.input,
            current_state=record.state.to_dict(),
            counts=record.counts,
            last_error=record.last_error,
            started_at=record.started_at,
            finished_at=record.finished_at,
        )
        self.session.add(model)
        for step in record.steps:
            step_model = ExecutionStepModel(
                id=step.id, execution_id=record.id, node_id=step.node_id, node_type=step.node_type,
            )
            _apply_step(step_model, step)
            self.session.add(step_model)
        await self.session.commit()
        return record

    async def load_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        result = await self.session.execute(
            select(ExecutionModel)
            .options(selectinload(ExecutionModel.steps))
            .where(ExecutionModel.id == execution_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return _record_from_model(model) if model else None

    async def save_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        result = await self.session.execute(
            update(ExecutionModel)
            .where(
                ExecutionModel.id == record.id,
                ExecutionModel.version == record.version,
            )
            .values(
                status=record.status.value,
                version=record.version + 1,
                current_state=record.state.to_dict(),
                counts=record.counts,
                last_error=record.last_error,
                finished_at=record.finished_at,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise ConcurrentModificationError(record.id, record.version)

        existing_result = await self.session.execute(
            select(ExecutionStepModel)
            .where(ExecutionStepModel.execution_id == record.id)
            .execution_options(populate_existing=True)
        )
        existing: Dict[str, ExecutionStepModel] = {s.id: s for s in existing_result.scalars().all()}
        for step in record.steps:
            step_model = existing.get(step.id)
            if step_model is None:
                step_model = ExecutionStepModel(
                    id=step.id, execution_id=record.id, node_id=step.node_id, node_type=step.node_type,
                )
                self.session.add(step_model)
            _apply_step(step_model, step)

        await self.session.commit()
        record.version += 1
        return record

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[ExecutionRecord], int]:
        """List executions with optional filtering and pagination.

        Args:
            workflow_id: Filter by workflow
            status: Filter by status (comma-separated values allowed)
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (records, total_count)
        """
        query = select(ExecutionModel).options(selectinload(ExecutionModel.steps))
        count_query = select(func.count()).select_from(ExecutionModel)

        if workflow_id:
            query = query.where(ExecutionModel.workflow_id == workflow_id)
            count_query = count_query.where(ExecutionModel.workflow_id == workflow_id)

        if status:
            statuses = [s.strip() for s in status.split(",") if s.strip()]
            query = query.where(ExecutionModel.status.in_(statuses))
            count_query = count_query.where(ExecutionModel.status.in_(statuses))

        query = query.order_by(ExecutionModel.started_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.session.execute(query.execution_options(populate_existing=True))
        records = [_record_from_model(m) for m in result.scalars().all()]

        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0

        return records, total
