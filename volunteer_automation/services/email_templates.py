"""Plain-text email templates used by ``send_email`` workflow actions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from volunteer_automation.core.exceptions import ValidationError

SIGNATURE = "\n\n— Green Silicon Valley"
DASHBOARD_URL = "https://greensiliconvalley.org/dashboard"


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    "welcome_volunteer": EmailTemplate(
        subject="Welcome to Green Silicon Valley!",
        body=(
            "Hello {name},\n\n"
            "Welcome to Green Silicon Valley! We're excited to have you join our mission "
            "to inspire the next generation.\n\n"
            "Getting Started:\n"
            "1. Complete your onboarding in the volunteer dashboard\n"
            "2. Choose your presentation activity\n"
            "3. Connect with your team\n"
            "4. Start making an impact!\n\n"
            "Access your dashboard: " + DASHBOARD_URL + "/volunteer"
        ),
    ),
    "checkin_week1": EmailTemplate(
        subject="GSV — How is your first week going?",
        body=(
            "Hello {name},\n\n"
            "You've been with Green Silicon Valley for a week now. "
            "If anything about onboarding is unclear, reply to this email and we'll help."
        ),
    ),
    "checkin_month1": EmailTemplate(
        subject="GSV — One month in",
        body=(
            "Hello {name},\n\n"
            "Thanks for a month of volunteering with us. Remember to log your hours "
            "in the volunteer dashboard: " + DASHBOARD_URL + "/volunteer"
        ),
    ),
    "thank_you_response": EmailTemplate(
        subject="GSV — Thanks for your response",
        body=(
            "Hello {name},\n\n"
            "Thank you for submitting the form. Our team will review your response "
            "and follow up if anything else is needed."
        ),
    ),
    "weekly_report": EmailTemplate(
        subject="GSV — Weekly platform summary",
        body="Here is this week's activity summary.\n\n{report}",
    ),
    "application_approved": EmailTemplate(
        subject="GSV — Volunteer Application Approved!",
        body=(
            "Congratulations {name}!\n\n"
            "Your volunteer application has been approved.\n"
            "Next steps:\n1. Complete your onboarding\n2. Choose your presentation activity\n"
            "3. Start making an impact!\n\n"
            "Log in to your dashboard to get started:\n" + DASHBOARD_URL + "/volunteer"
        ),
    ),
    "presentation_approved": EmailTemplate(
        subject="GSV — Presentation Approved!",
        body=(
            "Congratulations {team_name}!\n\n"
            "Your presentation on \"{topic}\" has been approved.\n"
            "We'll work with you to schedule it and send the school and date details.\n\n"
            "Check your dashboard for updates."
        ),
    ),
    "hours_approved": EmailTemplate(
        subject="GSV — Volunteer Hours Approved",
        body=(
            "Hello {name},\n\n"
            "Your hours submission was approved for {hours} hours.\n"
            "You can view your records in the volunteer dashboard."
        ),
    ),
}


class _BlankMissing(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_template(
    template_id: str,
    context: dict[str, Any] | None = None,
    subject: str | None = None,
    custom_message: str | None = None,
) -> tuple[str, str]:
    """Return ``(subject, body)`` for a template, leaving unknown fields blank."""
    template = EMAIL_TEMPLATES.get(template_id)
    if template is None:
        raise ValidationError(f"Unknown email template: {template_id}")
    values = _BlankMissing({k: v for k, v in (context or {}).items() if v is not None})
    body = template.body.format_map(values)
    if custom_message:
        body = f"{body}\n\n{custom_message}"
    return subject or template.subject.format_map(values), body + SIGNATURE
