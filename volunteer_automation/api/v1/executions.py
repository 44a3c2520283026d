from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from volunteer_automation.api.dependencies import require_staff
from volunteer_automation.database import get_db
from volunteer_automation.services.workflow_service import get_execution, list_executions

router = APIRouter()


@router.get("/")
async def get_executions(
    limit: int = 100,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
):
    return {"executions": list_executions(db, limit=limit)}


@router.get("/{execution_id}")
async def execution_detail(
    execution_id: str,
    db: Session = Depends(get_db),
    user: dict[str, Any] = Depends(require_staff),
):
    row = get_execution(db, execution_id)
    if not row:
        raise HTTPException(status_code=404, detail="Execution not found")
    return {"execution": row}
