"""
Workflow action execution.

Actions run strictly in list order, each awaited to completion before the
next starts. A failing action is recorded and the remaining actions still
run: a firing is a best-effort sequence, never a transaction, and nothing is
rolled back when a later action fails.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from volunteer_automation.core.anthropic_client import generate_chat_completion
from volunteer_automation.core.exceptions import IntegrationError, ValidationError
from volunteer_automation.core.logger import get_logger
from volunteer_automation.integrations.email import EmailService
from volunteer_automation.models import Task, User
from volunteer_automation.schemas.execution import ActionOutcome
from volunteer_automation.schemas.workflow import (
    AIAnalysisConfig,
    CreateTaskConfig,
    GenerateReportConfig,
    SendEmailConfig,
    SendNotificationConfig,
    UnparsedAction,
    UpdateRecordsConfig,
)
from volunteer_automation.services.email_templates import render_template
from volunteer_automation.services.notification_service import send_notifications
from volunteer_automation.services.reports import build_report
from volunteer_automation.services.storage import update_rows
from volunteer_automation.services.triggers import now_utc

logger = get_logger(__name__)

CompletionFn = Callable[[List[Dict[str, str]]], Awaitable[str]]
SleepFn = Callable[[float], Awaitable[Any]]

AI_ANALYST_PROMPT = "You are an AI analyst performing automated analysis for workflow triggers."
EVENT_RECIPIENT_PREFIX = "event."


@dataclass
class ExecutionContext:
    """Who and what caused a firing."""

    workflow_id: Any
    owner_id: str
    trigger_type: str
    event_data: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def _json_default(value: Any) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value)


class WorkflowActionExecutor:
    """Runs a workflow's action list and reports one outcome per action."""

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] | None = None,
        email_service: EmailService | None = None,
        completion: CompletionFn = generate_chat_completion,
        clock: Callable[[], datetime] = now_utc,
        sleep: SleepFn = asyncio.sleep,
    ):
        if session_factory is None:
            from volunteer_automation.database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.email_service = email_service or EmailService()
        self.completion = completion
        self.clock = clock
        self.sleep = sleep
        self._handlers = {
            "send_email": self._send_email,
            "generate_report": self._generate_report,
            "create_task": self._create_task,
            "update_records": self._update_records,
            "send_notification": self._send_notification,
            "ai_analysis": self._ai_analysis,
        }

    async def run(self, actions: Iterable[Any], context: ExecutionContext) -> List[ActionOutcome]:
        """Execute every action in order, continuing past failures.

        A ``delay`` (minutes) suspends the firing before the next action,
        whether or not the delayed action succeeded. A delay on the last
        action is ignored.
        """
        actions = list(actions)
        outcomes: List[ActionOutcome] = []
        for index, action in enumerate(actions):
            try:
                result = await self.execute_action(action, context)
                outcomes.append(ActionOutcome(action=action.type, success=True, result=result))
            except Exception as exc:
                logger.error(
                    "Workflow %s action %s (%s) failed: %s",
                    context.workflow_id,
                    index,
                    action.type,
                    exc,
                )
                outcomes.append(
                    ActionOutcome(action=action.type, success=False, error=str(exc) or exc.__class__.__name__)
                )

            if action.delay and index < len(actions) - 1:
                logger.info("Workflow %s sleeping %s minute(s) after %s", context.workflow_id, action.delay, action.type)
                await self.sleep(action.delay * 60)
        return outcomes

    async def execute_action(self, action: Any, context: ExecutionContext) -> Dict[str, Any]:
        if isinstance(action, UnparsedAction):
            raise ValidationError(action.error)
        handler = self._handlers.get(action.type)
        if handler is None:
            raise ValidationError(f"Unknown action type: {action.type}")
        return await handler(action.config, context)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _send_email(self, config: SendEmailConfig, context: ExecutionContext) -> Dict[str, Any]:
        recipients = self._resolve_recipients(config.recipients, context.event_data)
        subject, body = render_template(
            config.template,
            context.event_data,
            subject=config.subject,
            custom_message=config.custom_message,
        )
        logger.info("Sending email template=%s to %s recipient(s)", config.template, len(recipients))
        await self.email_service.send_email(to=recipients, subject=subject, text_content=body)
        return {
            "recipients": recipients,
            "template": config.template,
            "sent": True,
            "timestamp": self.clock().isoformat(),
        }

    async def _generate_report(self, config: GenerateReportConfig, context: ExecutionContext) -> Dict[str, Any]:
        now = self.clock()
        db = self.session_factory()
        try:
            data = build_report(db, config.type, now)
        finally:
            db.close()

        result: Dict[str, Any] = {
            "reportType": config.type,
            "format": config.format,
            "data": data,
            "generatedAt": now.isoformat(),
        }
        if config.recipients:
            recipients = self._resolve_recipients(config.recipients, context.event_data)
            report_text = json.dumps(data, indent=2, default=_json_default)
            subject, body = render_template("weekly_report", {"report": report_text})
            await self.email_service.send_email(to=recipients, subject=subject, text_content=body)
            result["emailedTo"] = recipients
        return result

    async def _create_task(self, config: CreateTaskConfig, context: ExecutionContext) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            task = Task(
                title=config.title,
                description=config.description,
                assigned_to=config.assignee,
                priority=config.priority,
                due_date=config.due_date,
                created_by=context.owner_id,
                status="pending",
            )
            db.add(task)
            db.commit()
            db.refresh(task)
            return {
                "taskId": str(task.id),
                "title": task.title,
                "assignee": config.assignee,
                "created": True,
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _update_records(self, config: UpdateRecordsConfig, context: ExecutionContext) -> Dict[str, Any]:
        extra_filters = []
        record_id = (context.event_data or {}).get("recordId")
        if record_id is not None:
            extra_filters.append(("id", record_id))

        db = self.session_factory()
        try:
            updated = update_rows(db, config.table, config.updates, config.conditions, extra_filters)
        finally:
            db.close()
        return {"table": config.table, "updatedRecords": updated, "updates": config.updates}

    async def _send_notification(self, config: SendNotificationConfig, context: ExecutionContext) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            sent = send_notifications(
                db,
                config.recipients,
                config.message,
                notification_type=config.type,
                action_url=config.action_url,
                metadata=json.loads(json.dumps(context.event_data or {}, default=_json_default)),
            )
        finally:
            db.close()
        return {"recipients": sent, "message": config.message, "type": config.type, "sent": True}

    async def _ai_analysis(self, config: AIAnalysisConfig, context: ExecutionContext) -> Dict[str, Any]:
        prompt = (
            f"Perform {config.analysis_type} analysis with parameters: "
            f"{json.dumps(config.parameters, default=_json_default)}\n"
            f"Event data: {json.dumps(context.event_data or {}, default=_json_default)}"
        )
        analysis = await self.completion(
            [
                {"role": "system", "content": AI_ANALYST_PROMPT},
                {"role": "user", "content": prompt},
            ]
        )
        return {
            "analysisType": config.analysis_type,
            "result": analysis,
            "timestamp": self.clock().isoformat(),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_recipients(self, entries: Iterable[str], event_data: Optional[Dict[str, Any]]) -> List[str]:
        """Expand recipient entries into email addresses.

        Entries are literal addresses, ``event.<field>`` references into the
        event payload, or role names (``founders``, ``intern``) looked up in
        ``users``.
        """
        addresses: List[str] = []
        roles: List[str] = []
        for entry in entries:
            if "@" in entry:
                addresses.append(entry)
            elif entry.startswith(EVENT_RECIPIENT_PREFIX):
                value = (event_data or {}).get(entry[len(EVENT_RECIPIENT_PREFIX):])
                if value:
                    addresses.append(str(value))
            else:
                role = entry.lower()
                roles.append(role[:-1] if role.endswith("s") else role)

        if roles:
            db = self.session_factory()
            try:
                rows = db.query(User.email).filter(User.role.in_(roles), User.email.isnot(None)).all()
            finally:
                db.close()
            addresses.extend(email for (email,) in rows)

        unique = list(dict.fromkeys(addresses))
        if not unique:
            raise IntegrationError(f"No email recipients resolved from {list(entries)}")
        return unique
