from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from volunteer_automation.api.dependencies import get_scheduler, require_staff
from volunteer_automation.core.exceptions import (
    IntegrationError,
    ValidationError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)
from volunteer_automation.database import get_db
from volunteer_automation.schemas.workflow import WorkflowGenerateRequest
from volunteer_automation.services.workflow_generator import WorkflowGenerator
from volunteer_automation.services.workflow_scheduler import WorkflowScheduler
from volunteer_automation.services import workflow_service

router = APIRouter()


def raise_http(exc: Exception) -> None:
    if isinstance(exc, WorkflowNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, WorkflowPermissionError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, IntegrationError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    raise exc


def get_generator() -> WorkflowGenerator:
    return WorkflowGenerator()


@router.get("/")
async def get_workflows(
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
):
    return {"workflows": workflow_service.list_workflows(db, user)}


@router.get("/templates")
async def get_templates(user: dict[str, Any] = Depends(require_staff)):
    return {"templates": [t.model_dump(mode="json", by_alias=True, exclude_none=True) for t in workflow_service.list_templates()]}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def post_workflow(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    """Create a workflow from a full definition or from ``{"templateId": ...}``."""
    try:
        template_id = payload.get("templateId") or payload.get("template_id")
        if template_id:
            workflow = workflow_service.create_workflow_from_template(db, template_id, user["id"], scheduler)
        else:
            workflow = workflow_service.create_workflow(db, payload, user["id"], scheduler)
    except Exception as exc:
        raise_http(exc)
    return {"workflow": workflow}


@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_workflow(
    payload: WorkflowGenerateRequest,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
    generator: WorkflowGenerator = Depends(get_generator),
):
    try:
        generated = await generator.generate(payload.description)
        if payload.activate:
            generated = generated.model_copy(update={"status": "active"})
        workflow = workflow_service.create_workflow(db, generated, user["id"], scheduler)
    except Exception as exc:
        raise_http(exc)
    return {"workflow": workflow}


@router.get("/{workflow_id}")
async def workflow_detail(
    workflow_id: str,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    try:
        workflow = workflow_service.get_workflow(db, workflow_id)
    except Exception as exc:
        raise_http(exc)
    # Registry keys are canonical UUID strings, whatever form the path used.
    workflow["scheduled"] = scheduler.is_scheduled(workflow["id"])
    workflow["next_runs"] = [when.isoformat() for when in scheduler.next_runs(workflow["id"])]
    return {"workflow": workflow}


@router.post("/{workflow_id}/pause")
async def workflow_pause(
    workflow_id: str,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    try:
        workflow = workflow_service.pause_workflow(db, workflow_id, user, scheduler)
    except Exception as exc:
        raise_http(exc)
    return {"workflow": workflow}


@router.post("/{workflow_id}/activate")
async def workflow_activate(
    workflow_id: str,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    try:
        workflow = workflow_service.activate_workflow(db, workflow_id, user, scheduler)
    except Exception as exc:
        raise_http(exc)
    return {"workflow": workflow}


@router.post("/{workflow_id}/execute")
async def workflow_execute(
    workflow_id: str,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    try:
        outcome = await workflow_service.execute_workflow(db, workflow_id, user, scheduler)
    except Exception as exc:
        raise_http(exc)
    if outcome["status"] == "running":
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=outcome)
    if outcome["execution"] is None:
        raise HTTPException(status_code=500, detail="Workflow execution could not be recorded")
    return outcome


@router.get("/{workflow_id}/executions")
async def workflow_executions(
    workflow_id: str,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
):
    try:
        workflow_service.get_workflow_row(db, workflow_id)
        executions = workflow_service.list_executions(db, workflow_id, limit)
    except Exception as exc:
        raise_http(exc)
    return {"executions": executions}
