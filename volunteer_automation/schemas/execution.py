from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class ActionOutcome(BaseModel):
    """Result of one action within a firing."""

    action: str
    success: bool
    result: Any = None
    error: str | None = None

    def as_log_entry(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"action": self.action, "success": self.success}
        if self.success:
            entry["result"] = self.result
        else:
            entry["error"] = self.error
        return entry


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    trigger_type: str
    executed_at: datetime
    success: bool
    results: list[ActionOutcome]
    errors: list[str]
    actor_id: str | None = None

    @field_validator("id", "workflow_id", mode="before")
    @classmethod
    def stringify_ids(cls, value: Any) -> str:
        return str(value)
