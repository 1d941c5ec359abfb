"""SQLAlchemy ORM models for the hybridflow API.

Tables:
- workflows: Stored workflow graphs (read-only to the engine)
- executions: One row per workflow run, with the engine's currentState
- execution_steps: One row per attempt to run one node
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


# ─── Workflow Definition ─────────────────────────────────────────────


class WorkflowModel(Base):
    """Persistent workflow definition.

    Stores the full graph (nodes + edges) as JSON.
    """

    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Graph definition stored as JSON
    graph_definition: Mapped[Dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Workflow graph JSON: {nodes, edges}",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    executions: Mapped[List["ExecutionModel"]] = relationship(
        back_populates="workflow", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_workflows_updated_at", "updated_at"),
    )


# ─── Execution ───────────────────────────────────────────────────────


class ExecutionModel(Base):
    """Record of a single workflow execution.

    `version` backs the optimistic concurrency check on every save.
    """

    __tablename__ = "executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    workflow_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending",
        comment="pending | running | suspended | waiting | completed | failed | cancelled",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    input_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Execution input",
    )
    current_state: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True,
        comment="Engine state: activeNodes, completedNodes, stepResults, edgeStates, mergeTallies, ...",
    )
    counts: Mapped[Optional[Dict[str, int]]] = mapped_column(
        JSON, nullable=True, comment="Step counts: {total, completed, failed}",
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    workflow: Mapped["WorkflowModel"] = relationship(back_populates="executions")
    steps: Mapped[List["ExecutionStepModel"]] = relationship(
        back_populates="execution", cascade="all, delete-orphan",
        order_by="ExecutionStepModel.started_at",
    )

    __table_args__ = (
        Index("ix_executions_workflow_id", "workflow_id"),
        Index("ix_executions_status", "status"),
        Index("ix_executions_started_at", "started_at"),
    )


# ─── Execution Step ──────────────────────────────────────────────────


class ExecutionStepModel(Base):
    """One attempt to run one node within an execution."""

    __tablename__ = "execution_steps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    execution_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("executions.id", ondelete="CASCADE"), nullable=False,
    )
    node_id: Mapped[str] = mapped_column(
        String(128), nullable=False, comment="Node ID within the workflow graph",
    )
    node_type: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="Node type from registry",
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending",
        comment="pending | running | suspended | completed | failed | skipped",
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Input / output
    input_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True,
    )
    output_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True,
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timing
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Due time of a wait step",
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Relationship
    execution: Mapped["ExecutionModel"] = relationship(back_populates="steps")

    __table_args__ = (
        Index("ix_steps_execution_id", "execution_id"),
        Index("ix_steps_execution_node", "execution_id", "node_id"),
        Index("ix_steps_status", "status"),
    )
