"""Trigger, action and workflow definitions.

Definitions are stored as JSON on the workflow row in the shape the admin UI
produces (``{"type": ..., "config": {...}}`` with camelCase config keys).
These models are the single gate for that JSON: workflows are validated on
creation and re-validated when the scheduler loads them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from volunteer_automation.core.exceptions import TriggerConfigError, ValidationError

TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

ActionKind = Literal[
    "send_email",
    "generate_report",
    "create_task",
    "update_records",
    "send_notification",
    "ai_analysis",
]


class _Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TimeTriggerConfig(_Config):
    frequency: Literal["daily", "weekly", "monthly"]
    time: str
    day_of_week: int | None = Field(default=None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: int | None = Field(default=None, alias="dayOfMonth", ge=1, le=31)

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_OF_DAY.match(value.strip()):
            raise ValueError("time must be HH:MM (24h)")
        return value.strip()

    @model_validator(mode="after")
    def require_day_for_frequency(self) -> "TimeTriggerConfig":
        if self.frequency == "weekly" and self.day_of_week is None:
            raise ValueError("weekly time triggers need dayOfWeek (0=Sunday)")
        if self.frequency == "monthly" and self.day_of_month is None:
            raise ValueError("monthly time triggers need dayOfMonth")
        return self

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


class TimeTrigger(BaseModel):
    type: Literal["time"]
    config: TimeTriggerConfig


class EventTriggerConfig(_Config):
    event: str = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)


class EventTrigger(BaseModel):
    type: Literal["event"]
    config: EventTriggerConfig


class ConditionQuery(_Config):
    table: str = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)


class ConditionTriggerConfig(_Config):
    query: ConditionQuery


class ConditionTrigger(BaseModel):
    type: Literal["condition"]
    config: ConditionTriggerConfig


Trigger = Annotated[Union[TimeTrigger, EventTrigger, ConditionTrigger], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class SendEmailConfig(_Config):
    template: str = Field(min_length=1)
    recipients: list[str] = Field(min_length=1)
    subject: str | None = None
    custom_message: str | None = Field(default=None, alias="customMessage")


class GenerateReportConfig(_Config):
    type: str = Field(min_length=1)
    format: str = "json"
    recipients: list[str] = Field(default_factory=list)


class CreateTaskConfig(_Config):
    title: str = Field(min_length=1)
    description: str | None = None
    assignee: str | None = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    due_date: date | None = Field(default=None, alias="dueDate")


class UpdateRecordsConfig(_Config):
    table: str = Field(min_length=1)
    updates: dict[str, Any] = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)


class SendNotificationConfig(_Config):
    message: str = Field(min_length=1)
    recipients: list[str] = Field(min_length=1)
    type: str = "info"
    action_url: str | None = Field(default=None, alias="actionUrl")


class AIAnalysisConfig(_Config):
    analysis_type: str = Field(min_length=1, alias="analysisType")
    parameters: dict[str, Any] = Field(default_factory=dict)


class _Action(BaseModel):
    # Minutes to wait after this action before starting the next one.
    delay: float | None = Field(default=None, ge=0)


class SendEmailAction(_Action):
    type: Literal["send_email"]
    config: SendEmailConfig


class GenerateReportAction(_Action):
    type: Literal["generate_report"]
    config: GenerateReportConfig


class CreateTaskAction(_Action):
    type: Literal["create_task"]
    config: CreateTaskConfig


class UpdateRecordsAction(_Action):
    type: Literal["update_records"]
    config: UpdateRecordsConfig


class SendNotificationAction(_Action):
    type: Literal["send_notification"]
    config: SendNotificationConfig


class AIAnalysisAction(_Action):
    type: Literal["ai_analysis"]
    config: AIAnalysisConfig


Action = Annotated[
    Union[
        SendEmailAction,
        GenerateReportAction,
        CreateTaskAction,
        UpdateRecordsAction,
        SendNotificationAction,
        AIAnalysisAction,
    ],
    Field(discriminator="type"),
]


@dataclass
class UnparsedAction:
    """A stored action that no longer validates; executing it fails."""

    type: str
    config: dict[str, Any]
    error: str
    delay: float | None = None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

_trigger_adapter: TypeAdapter = TypeAdapter(Trigger)
_action_adapter: TypeAdapter = TypeAdapter(Action)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_trigger(data: Any) -> TimeTrigger | EventTrigger | ConditionTrigger:
    try:
        return _trigger_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise TriggerConfigError(f"Invalid trigger: {_describe(exc)}") from exc


def parse_action(data: Any):
    try:
        return _action_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid action: {_describe(exc)}") from exc


def parse_action_lenient(data: Any):
    """Parse a stored action, keeping invalid ones as :class:`UnparsedAction`."""
    try:
        return parse_action(data)
    except ValidationError as exc:
        raw = data if isinstance(data, dict) else {}
        return UnparsedAction(
            type=str(raw.get("type", "unknown")),
            config=raw.get("config") or {},
            error=str(exc),
        )


def dump_definition(model: BaseModel) -> dict[str, Any]:
    """Serialize a trigger or action back to its stored JSON shape."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class WorkflowDefinition:
    """Validated view of a workflow row, as the scheduler consumes it."""

    id: Any
    name: str
    owner_id: str
    status: str
    triggers: list = field(default_factory=list)
    actions: list = field(default_factory=list)
    # (raw trigger, error) pairs skipped while loading.
    rejected_triggers: list[tuple[Any, str]] = field(default_factory=list)

    @property
    def has_delays(self) -> bool:
        """True when a firing suspends between actions (a last-action delay never runs)."""
        return any(action.delay for action in self.actions[:-1])

    @classmethod
    def from_row(cls, row) -> "WorkflowDefinition":
        triggers = []
        rejected = []
        for raw in row.trigger_conditions or []:
            try:
                triggers.append(parse_trigger(raw))
            except TriggerConfigError as exc:
                rejected.append((raw, str(exc)))
        return cls(
            id=row.id,
            name=row.name,
            owner_id=row.created_by,
            status=row.status,
            triggers=triggers,
            actions=[parse_action_lenient(raw) for raw in row.actions or []],
            rejected_triggers=rejected,
        )


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    triggers: list[Trigger] = Field(min_length=1)
    actions: list[Action] = Field(min_length=1)
    status: Literal["active", "paused"] = "active"


class WorkflowFromTemplate(BaseModel):
    template_id: str = Field(alias="templateId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class WorkflowGenerateRequest(BaseModel):
    description: str = Field(min_length=3)
    activate: bool = False


class WorkflowTemplate(BaseModel):
    name: str
    description: str
    triggers: list[Trigger]
    actions: list[Action]


class WorkflowSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    trigger_conditions: list[dict[str, Any]]
    actions: list[dict[str, Any]]
    status: str
    last_executed: datetime | None = None
    execution_count: int = 0
    created_by: str
    created_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> str:
        return str(value)


def build_workflow_payload(data: dict[str, Any]) -> WorkflowCreate:
    """Validate an untyped workflow dict (API body, template, LLM output)."""
    raw_triggers = data.get("triggers") or []
    # Surface the trigger problem first; it is the one that silently never fires.
    for raw in raw_triggers:
        parse_trigger(raw)
    try:
        return WorkflowCreate.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid workflow: {_describe(exc)}") from exc
