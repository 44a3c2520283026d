"""
Health API Routes
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from volunteer_automation.config import settings
from volunteer_automation.database import check_database_connection, database_health

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Application, database and scheduler health"""
    db = database_health()
    ok = bool(db.get("ok")) and check_database_connection()

    scheduler = getattr(request.app.state, "workflow_scheduler", None)
    scheduler_status = scheduler.status() if scheduler is not None else {"started": False}
    if settings.scheduler_enabled and not scheduler_status.get("started"):
        ok = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if ok else "degraded",
            "database": db,
            "scheduler": scheduler_status,
        },
    )
