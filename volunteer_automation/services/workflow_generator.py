from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from volunteer_automation.core.anthropic_client import generate_chat_completion
from volunteer_automation.core.exceptions import ValidationError
from volunteer_automation.schemas.workflow import WorkflowCreate, build_workflow_payload
from volunteer_automation.services.email_templates import EMAIL_TEMPLATES

WORKFLOW_GENERATOR_SYSTEM_PROMPT = (
    "You are a workflow automation expert. Create efficient, practical workflows from descriptions."
)

WORKFLOW_GENERATION_PROMPT = """
Create a workflow configuration based on this description: "{description}"

Return ONLY a JSON object with this structure, no markdown:
{{
  "name": "Workflow Name",
  "description": "Brief description of what this workflow does",
  "triggers": [
    {{"type": "time", "config": {{"frequency": "daily|weekly|monthly", "time": "HH:MM", "dayOfWeek": 0, "dayOfMonth": 1}}}},
    {{"type": "event", "config": {{"event": "volunteer_approved|form_response_received|presentation_created", "conditions": {{}}}}}},
    {{"type": "condition", "config": {{"query": {{"table": "table_name", "conditions": {{"column": "value"}}}}}}}}
  ],
  "actions": [
    {{"type": "send_email", "config": {{"template": "{templates}", "recipients": ["founders"]}}, "delay": 0}},
    {{"type": "create_task", "config": {{"title": "Task title", "assignee": "user id", "priority": "medium"}}}},
    {{"type": "send_notification", "config": {{"message": "Text", "recipients": ["user id"]}}}},
    {{"type": "generate_report", "config": {{"type": "volunteer_activity|form_responses|monthly_summary"}}}},
    {{"type": "update_records", "config": {{"table": "table_name", "updates": {{}}, "conditions": {{}}}}}},
    {{"type": "ai_analysis", "config": {{"analysisType": "summary", "parameters": {{}}}}}}
  ]
}}

Only include the triggers and actions the description needs. "delay" is in minutes.
"""

CompletionFn = Callable[[list[dict[str, str]]], Awaitable[str]]


class WorkflowGenerator:
    """Turns a natural-language description into a validated workflow payload."""

    def __init__(self, completion: CompletionFn = generate_chat_completion) -> None:
        self.completion = completion

    async def generate(self, description: str) -> WorkflowCreate:
        prompt = WORKFLOW_GENERATION_PROMPT.format(
            description=description.strip(),
            templates="|".join(EMAIL_TEMPLATES),
        )
        raw = await self.completion(
            [
                {"role": "system", "content": WORKFLOW_GENERATOR_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ]
        )
        config = self._parse_json(raw)
        # Generated workflows start paused until someone reviews them.
        config["status"] = "paused"
        return build_workflow_payload(config)

    def _parse_json(self, generated: str) -> dict[str, Any]:
        # Strip markdown fences if model emits them.
        cleaned = generated.replace("```json", "").replace("```", "").strip()
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end == -1:
            raise ValidationError("Failed to generate valid workflow configuration from AI response")
        try:
            parsed = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ValidationError("Failed to generate valid workflow configuration from AI response") from exc
        if not isinstance(parsed, dict):
            raise ValidationError("Failed to generate valid workflow configuration from AI response")
        return parsed
