from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httpx

from volunteer_automation.config import settings
from volunteer_automation.core.exceptions import IntegrationError


class EmailService:
    """Email sending via SendGrid or SMTP. Failed sends raise; nothing is retried."""

    def __init__(self):
        self.sendgrid_key = settings.sendgrid_api_key.get_secret_value() if settings.sendgrid_api_key else None
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password.get_secret_value() if settings.smtp_password else None
        self.default_from_email = settings.default_from_email
        self.default_from_name = settings.default_from_name

    async def send_email(
        self,
        to: List[str],
        subject: str,
        text_content: str,
        html_content: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not to:
            raise IntegrationError("No recipients to send to")
        from_email = from_email or self.default_from_email
        from_name = from_name or self.default_from_name
        if self.sendgrid_key:
            return await self._send_via_sendgrid(to, subject, text_content, html_content, from_email, from_name)
        return await self._send_via_smtp(to, subject, text_content, html_content, from_email, from_name)

    async def _send_via_sendgrid(
        self,
        to: List[str],
        subject: str,
        text_content: str,
        html_content: Optional[str],
        from_email: str,
        from_name: str,
    ) -> Dict[str, Any]:
        content = [{"type": "text/plain", "value": text_content}]
        if html_content:
            content.append({"type": "text/html", "value": html_content})
        payload = {
            "personalizations": [{"to": [{"email": address} for address in to]}],
            "from": {"email": from_email, "name": from_name},
            "subject": subject,
            "content": content,
        }
        async with httpx.AsyncClient(timeout=20.0) as client:
            response = await client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers={
                    "Authorization": f"Bearer {self.sendgrid_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            response.raise_for_status()
            return {"status": "sent", "message_id": response.headers.get("X-Message-Id"), "to": to}

    async def _send_via_smtp(
        self,
        to: List[str],
        subject: str,
        text_content: str,
        html_content: Optional[str],
        from_email: str,
        from_name: str,
    ) -> Dict[str, Any]:
        if not all([self.smtp_host, self.smtp_username, self.smtp_password]):
            raise IntegrationError("SMTP is not configured and SendGrid key is missing")
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{from_name} <{from_email}>"
        message["To"] = ", ".join(to)
        message.attach(MIMEText(text_content, "plain"))
        if html_content:
            message.attach(MIMEText(html_content, "html"))
        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            server.starttls()
            server.login(self.smtp_username, self.smtp_password)
            server.send_message(message)
        return {"status": "sent", "to": to}
