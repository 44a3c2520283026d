"""
SQLAlchemy models for the volunteer platform automation service.
"""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from volunteer_automation.models.base import Base, JSONType
from volunteer_automation.models.workflow import (
    WORKFLOW_STATUS_ACTIVE,
    WORKFLOW_STATUS_PAUSED,
    Workflow,
    WorkflowExecution,
)


class User(Base):
    __tablename__ = "users"

    id = Column(Text, primary_key=True)
    name = Column(Text)
    email = Column(Text)
    role = Column(Text, nullable=False, default="volunteer")
    status = Column(Text, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text)
    assigned_to = Column(Text)
    priority = Column(Text, default="medium")
    due_date = Column(Date)
    status = Column(Text, default="pending")
    created_by = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    notification_type = Column(Text, default="info")
    title = Column(Text, nullable=False)
    message = Column(Text)
    action_url = Column(Text)
    is_read = Column(Boolean, default=False)
    meta = Column("metadata", JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Volunteer(Base):
    __tablename__ = "volunteers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text)
    team_name = Column(Text)
    email = Column(Text)
    status = Column(Text, default="pending")
    application_status = Column(Text, default="pending")
    hours_total = Column(Float, default=0)
    approved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class VolunteerHours(Base):
    __tablename__ = "volunteer_hours"

    id = Column(Integer, primary_key=True, autoincrement=True)
    volunteer_id = Column(Uuid, ForeignKey("volunteers.id", ondelete="CASCADE"), nullable=False)
    presentation_id = Column(Uuid, ForeignKey("presentations.id", ondelete="SET NULL"))
    hours_logged = Column(Float, nullable=False, default=0)
    activity = Column(Text)
    status = Column(Text, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Form(Base):
    __tablename__ = "forms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text)
    created_by = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FormResponse(Base):
    __tablename__ = "form_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id = Column(Uuid, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    respondent_email = Column(Text)
    answers = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Presentation(Base):
    __tablename__ = "presentations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    topic = Column(Text)
    status = Column(Text, default="pending")
    scheduled_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


__all__ = [
    "Base",
    "JSONType",
    "Form",
    "FormResponse",
    "Notification",
    "Presentation",
    "Task",
    "User",
    "Volunteer",
    "VolunteerHours",
    "Workflow",
    "WorkflowExecution",
    "WORKFLOW_STATUS_ACTIVE",
    "WORKFLOW_STATUS_PAUSED",
]
