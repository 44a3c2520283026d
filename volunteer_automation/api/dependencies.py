"""Shared API dependencies."""
from fastapi import HTTPException, Request, status

from volunteer_automation.core.security import get_current_user, require_roles, require_staff
from volunteer_automation.services.workflow_scheduler import WorkflowScheduler


def get_scheduler(request: Request) -> WorkflowScheduler:
    scheduler = getattr(request.app.state, "workflow_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow scheduler is not running",
        )
    return scheduler


__all__ = ["get_current_user", "get_scheduler", "require_roles", "require_staff"]
