"""
WATCHTOWER - Email Notification Service
=======================================
Send breach alert emails via Resend or SendGrid.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from html import escape
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class EmailMessage:
    """Email message data."""
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None


class EmailProvider(ABC):
    """Abstract email provider."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        pass


class SendGridProvider(EmailProvider):
    """SendGrid email provider."""

    def __init__(self, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = "https://api.sendgrid.com/v3"
        self.transport = transport

    async def send(self, message: EmailMessage) -> bool:
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/mail/send",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "personalizations": [{"to": [{"email": message.to}]}],
                        "from": {
                            "email": message.from_email,
                            "name": message.from_name,
                        },
                        "subject": message.subject,
                        "content": [
                            {"type": "text/html", "value": message.html},
                        ],
                    },
                    timeout=30.0,
                )

                if response.status_code in [200, 201, 202]:
                    logger.info("sendgrid_email_sent", to=message.to, subject=message.subject)
                    return True
                else:
                    logger.error(
                        "sendgrid_email_failed",
                        status_code=response.status_code,
                        response=response.text,
                    )
                    return False

        except httpx.HTTPError as e:
            logger.error("sendgrid_error", error=str(e))
            return False


class ResendProvider(EmailProvider):
    """Resend email provider."""

    def __init__(self, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = "https://api.resend.com"
        self.transport = transport

    async def send(self, message: EmailMessage) -> bool:
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{message.from_name} <{message.from_email}>",
                        "to": [message.to],
                        "subject": message.subject,
                        "html": message.html,
                    },
                    timeout=30.0,
                )

                if response.status_code in [200, 201]:
                    logger.info("resend_email_sent", to=message.to, subject=message.subject)
                    return True
                else:
                    logger.error(
                        "resend_email_failed",
                        status_code=response.status_code,
                        response=response.text,
                    )
                    return False

        except httpx.HTTPError as e:
            logger.error("resend_error", error=str(e))
            return False


class ConsoleProvider(EmailProvider):
    """Log-only provider for development/testing."""

    async def send(self, message: EmailMessage) -> bool:
        logger.info(
            "email_console",
            to=message.to,
            subject=message.subject,
            html_length=len(message.html),
        )
        return True


def render_breach_alert(
    subject_value: str,
    subject_type: str,
    source_name: str,
    source_date: Optional[str],
    payload: dict,
    dashboard_url: str,
) -> tuple[str, str]:
    """Build (subject line, html body) for a breach alert."""
    leaked_lines = "<br>".join(
        f"<strong>{escape(str(key)).capitalize()}:</strong> {escape(str(value))}"
        for key, value in payload.items()
    )
    date_row = (
        f"<p><strong>Breach Date:</strong> {escape(source_date)}</p>" if source_date else ""
    )

    subject = f"Breach Alert: {subject_value} found in {source_name}"
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #dc2626;">New Data Breach Detected</h1>
  <p>A monitored subject has been found in a new data breach:</p>
  <div style="background-color: #fee2e2; border-left: 4px solid #dc2626; padding: 16px; margin: 20px 0;">
    <p><strong>Subject:</strong> {escape(subject_value)} ({escape(subject_type)})</p>
    <p><strong>Breach Source:</strong> {escape(source_name)}</p>
    {date_row}
  </div>
  <h3>Leaked Data:</h3>
  <div style="background-color: #f3f4f6; padding: 16px; border-radius: 8px;">
    {leaked_lines}
  </div>
  <p style="margin-top: 20px;">
    <a href="{escape(dashboard_url)}"
       style="background-color: #2563eb; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
      View Alert Details
    </a>
  </p>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #e5e7eb;">
  <p style="color: #6b7280; font-size: 14px;">
    You're receiving this email because you're monitoring this subject for data breaches.
  </p>
</div>
"""
    return subject, html


def render_workflow_complete(target: str, message: str, investigation_url: str) -> tuple[str, str]:
    """Build (subject line, html body) for a finished workflow search."""
    subject = f"Search complete: {target}"
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #16a34a;">Search Results Ready</h1>
  <p>The background search for <strong>{escape(target)}</strong> has finished.</p>
  <div style="background-color: #dcfce7; border-left: 4px solid #16a34a; padding: 16px; margin: 20px 0;">
    <p>{escape(message)}</p>
  </div>
  <p style="margin-top: 20px;">
    <a href="{escape(investigation_url)}"
       style="background-color: #2563eb; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
      Open Investigation
    </a>
  </p>
</div>
"""
    return subject, html


class EmailService:
    """Email notification service."""

    def __init__(self, provider: Optional[EmailProvider] = None):
        from watchtower.config import get_settings
        settings = get_settings()

        if provider is not None:
            self.provider = provider
        elif settings.resend_api_key:
            self.provider = ResendProvider(settings.resend_api_key)
            logger.info("email_provider_initialized", provider="resend")
        elif settings.sendgrid_api_key:
            self.provider = SendGridProvider(settings.sendgrid_api_key)
            logger.info("email_provider_initialized", provider="sendgrid")
        else:
            self.provider = ConsoleProvider()
            logger.warning("email_provider_console", message="No email API key set, using console")

        self.from_email = settings.email_from
        self.from_name = settings.email_from_name
        self.frontend_url = settings.frontend_url

    async def send(self, message: EmailMessage) -> bool:
        """Send an email."""
        if not message.from_email:
            message.from_email = self.from_email
        if not message.from_name:
            message.from_name = self.from_name

        return await self.provider.send(message)

    async def send_breach_alert(
        self,
        to_email: str,
        subject_value: str,
        subject_type: str,
        source_name: str,
        source_date: Optional[str],
        payload: dict,
    ) -> bool:
        """Send notification for one newly detected breach record."""
        subject, html = render_breach_alert(
            subject_value=subject_value,
            subject_type=subject_type,
            source_name=source_name,
            source_date=source_date,
            payload=payload,
            dashboard_url=f"{self.frontend_url.rstrip('/')}/breach-monitoring",
        )
        return await self.send(EmailMessage(to=to_email, subject=subject, html=html))

    async def send_workflow_complete(
        self,
        to_email: str,
        investigation_id: str,
        target: str,
        message: str,
    ) -> bool:
        """Tell the investigation owner that a workflow search finished."""
        subject, html = render_workflow_complete(
            target=target,
            message=message,
            investigation_url=f"{self.frontend_url.rstrip('/')}/investigations/{investigation_id}",
        )
        return await self.send(EmailMessage(to=to_email, subject=subject, html=html))
