from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from volunteer_automation.api.dependencies import get_scheduler, require_staff
from volunteer_automation.services.workflow_scheduler import WorkflowScheduler

router = APIRouter()


@router.post("/{event_name}")
async def publish_event(
    event_name: str,
    payload: dict[str, Any] | None = Body(default=None),
    user: dict[str, Any] = Depends(require_staff),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    """Publish an application event to every workflow listening for it.

    Responds 202 when some firings wait on action delays and are still running.
    """
    dispatch = await scheduler.trigger_event(event_name, payload or {})
    return JSONResponse(
        status_code=202 if dispatch.running else 200,
        content={
            "event": event_name,
            "triggered": dispatch.started,
            "executions": [record.model_dump(mode="json") for record in dispatch.records],
            "running": dispatch.running,
        },
    )
