from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from volunteer_automation.core.exceptions import WorkflowNotFoundError, WorkflowPermissionError
from volunteer_automation.core.logger import get_logger
from volunteer_automation.models import (
    WORKFLOW_STATUS_ACTIVE,
    WORKFLOW_STATUS_PAUSED,
    Workflow,
    WorkflowExecution,
)
from volunteer_automation.schemas.execution import ExecutionRecord
from volunteer_automation.schemas.workflow import (
    WorkflowCreate,
    WorkflowDefinition,
    WorkflowSchema,
    WorkflowTemplate,
    build_workflow_payload,
    dump_definition,
)

logger = get_logger(__name__)

WORKFLOW_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "Volunteer Onboarding",
        "description": "Automated welcome emails and check-in reminders for new volunteers",
        "triggers": [{"type": "event", "config": {"event": "volunteer_approved"}}],
        "actions": [
            {"type": "send_email", "config": {"template": "welcome_volunteer", "recipients": ["event.email"]}, "delay": 7 * 24 * 60},
            {"type": "send_email", "config": {"template": "checkin_week1", "recipients": ["event.email"]}, "delay": 23 * 24 * 60},
            {"type": "send_email", "config": {"template": "checkin_month1", "recipients": ["event.email"]}},
        ],
    },
    {
        "name": "Form Response Follow-up",
        "description": "Automatic follow-up emails when forms receive responses",
        "triggers": [{"type": "event", "config": {"event": "form_response_received"}}],
        "actions": [
            {"type": "send_email", "config": {"template": "thank_you_response", "recipients": ["event.respondent_email"]}},
            {"type": "create_task", "config": {"title": "Review form response", "assignee": "founder"}},
        ],
    },
    {
        "name": "Weekly Analytics Report",
        "description": "Automated weekly summary of platform activity",
        "triggers": [{"type": "time", "config": {"frequency": "weekly", "dayOfWeek": 1, "time": "08:00"}}],
        "actions": [
            {"type": "generate_report", "config": {"type": "volunteer_activity", "recipients": ["founders"]}},
        ],
    },
]


def list_templates() -> list[WorkflowTemplate]:
    return [WorkflowTemplate.model_validate(item) for item in WORKFLOW_TEMPLATES]


def find_template(template_id: str) -> WorkflowTemplate | None:
    for template in list_templates():
        if template.name == template_id:
            return template
    return None


def serialize_workflow(row: Workflow) -> dict[str, Any]:
    return WorkflowSchema.model_validate(row).model_dump(mode="json")


def serialize_execution(row: WorkflowExecution) -> dict[str, Any]:
    return ExecutionRecord.model_validate(row).model_dump(mode="json")


def _parse_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise WorkflowNotFoundError(f"Workflow {value} not found") from exc


def get_workflow_row(db: Session, workflow_id: Any) -> Workflow:
    row = db.query(Workflow).filter(Workflow.id == _parse_id(workflow_id)).first()
    if row is None:
        raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
    return row


def ensure_can_manage(row: Workflow, user: dict[str, Any]) -> None:
    if user.get("role") == "founder" or row.created_by == user.get("id"):
        return
    raise WorkflowPermissionError("Only the workflow owner or a founder can manage this workflow")


def list_workflows(db: Session, user: dict[str, Any]) -> list[dict[str, Any]]:
    """Founders see every workflow; everyone else sees their own."""
    query = db.query(Workflow)
    if user.get("role") != "founder":
        query = query.filter(Workflow.created_by == user.get("id"))
    return [serialize_workflow(row) for row in query.order_by(Workflow.created_at.desc()).all()]


def get_workflow(db: Session, workflow_id: Any) -> dict[str, Any]:
    return serialize_workflow(get_workflow_row(db, workflow_id))


def create_workflow(
    db: Session,
    payload: WorkflowCreate | dict[str, Any],
    owner_id: str,
    scheduler=None,
) -> dict[str, Any]:
    """Persist a validated workflow and, when active, start scheduling it."""
    if not isinstance(payload, WorkflowCreate):
        payload = build_workflow_payload(payload)

    row = Workflow(
        name=payload.name,
        description=payload.description,
        trigger_conditions=[dump_definition(trigger) for trigger in payload.triggers],
        actions=[dump_definition(action) for action in payload.actions],
        status=payload.status,
        execution_count=0,
        created_by=owner_id,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created workflow %s (%s) for %s", row.id, row.name, owner_id)

    if scheduler is not None and row.status == WORKFLOW_STATUS_ACTIVE:
        scheduler.schedule(row)
    return serialize_workflow(row)


def create_workflow_from_template(db: Session, template_id: str, owner_id: str, scheduler=None) -> dict[str, Any]:
    template = find_template(template_id)
    if template is None:
        raise WorkflowNotFoundError(f"Template {template_id} not found")
    payload = WorkflowCreate(
        name=template.name,
        description=template.description,
        triggers=template.triggers,
        actions=template.actions,
    )
    return create_workflow(db, payload, owner_id, scheduler)


def set_workflow_status(
    db: Session,
    workflow_id: Any,
    status: str,
    user: dict[str, Any],
    scheduler=None,
) -> dict[str, Any]:
    """Flip a workflow between active and paused, keeping the scheduler in sync.

    Reactivation schedules forward from now; periods missed while paused
    are not replayed.
    """
    row = get_workflow_row(db, workflow_id)
    ensure_can_manage(row, user)
    row.status = status
    row.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(row)

    if scheduler is not None:
        if status == WORKFLOW_STATUS_ACTIVE:
            scheduler.schedule(row)
        else:
            scheduler.unschedule(row.id)
    logger.info("Workflow %s is now %s", row.id, status)
    return serialize_workflow(row)


def pause_workflow(db: Session, workflow_id: Any, user: dict[str, Any], scheduler=None) -> dict[str, Any]:
    return set_workflow_status(db, workflow_id, WORKFLOW_STATUS_PAUSED, user, scheduler)


def activate_workflow(db: Session, workflow_id: Any, user: dict[str, Any], scheduler=None) -> dict[str, Any]:
    return set_workflow_status(db, workflow_id, WORKFLOW_STATUS_ACTIVE, user, scheduler)


async def execute_workflow(db: Session, workflow_id: Any, user: dict[str, Any], scheduler) -> dict[str, Any]:
    """Run a workflow's actions immediately, outside its triggers.

    Workflows whose actions wait on delays are started in the background and
    reported as ``running``; others are awaited and their execution returned.
    """
    row = get_workflow_row(db, workflow_id)
    ensure_can_manage(row, user)
    definition = WorkflowDefinition.from_row(row)
    task = scheduler.start_firing(definition, "manual")
    if definition.has_delays:
        logger.info("Workflow %s started in background (delayed actions)", row.id)
        return {"status": "running", "execution": None}

    record = await asyncio.shield(task)
    if record is None:
        return {"status": "unrecorded", "execution": None}
    return {"status": "completed", "execution": record.model_dump(mode="json")}


def list_executions(db: Session, workflow_id: Any | None = None, limit: int = 100) -> list[dict[str, Any]]:
    query = db.query(WorkflowExecution)
    if workflow_id is not None:
        query = query.filter(WorkflowExecution.workflow_id == _parse_id(workflow_id))
    rows = query.order_by(WorkflowExecution.executed_at.desc()).limit(limit).all()
    return [serialize_execution(row) for row in rows]


def get_execution(db: Session, execution_id: Any) -> dict[str, Any] | None:
    try:
        parsed = uuid.UUID(str(execution_id))
    except ValueError:
        return None
    row = db.query(WorkflowExecution).filter(WorkflowExecution.id == parsed).first()
    return serialize_execution(row) if row else None
