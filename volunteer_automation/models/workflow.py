"""Workflow definitions and their append-only execution log."""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from volunteer_automation.models.base import Base, JSONType

WORKFLOW_STATUS_ACTIVE = "active"
WORKFLOW_STATUS_PAUSED = "paused"


class Workflow(Base):
    __tablename__ = "ai_workflows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    trigger_conditions = Column(JSONType, nullable=False, default=list)
    actions = Column(JSONType, nullable=False, default=list)
    status = Column(Text, nullable=False, default=WORKFLOW_STATUS_ACTIVE)
    last_executed = Column(DateTime(timezone=True))
    execution_count = Column(Integer, nullable=False, default=0)
    created_by = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_id = Column(Uuid, ForeignKey("ai_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    trigger_type = Column(Text, nullable=False)
    executed_at = Column(DateTime(timezone=True), nullable=False)
    success = Column(Boolean, nullable=False)
    results = Column(JSONType, nullable=False, default=list)
    errors = Column(JSONType, nullable=False, default=list)
    actor_id = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
