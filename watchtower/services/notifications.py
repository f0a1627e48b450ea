"""
WATCHTOWER - Notification Sink
==============================

Fire-and-forget delivery of user-visible notifications.

Breach alerts go out by email to the owning user. Workflow completions go
to a completion callback together with a composed summary message; the
default callback emails the investigation owner.
A failed delivery is logged and reported as False; it never propagates.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import select

from watchtower.db.database import async_session
from watchtower.db.models import Investigation, User
from watchtower.monitoring.metrics import record_notification
from watchtower.services.email import EmailService

logger = structlog.get_logger(__name__)


@dataclass
class BreachNotification:
    """Everything a recipient needs to know about one new breach record."""
    user_id: UUID
    subject_value: str
    subject_type: str
    source_name: str
    source_date: Optional[str]
    payload: dict


class NotificationSink(ABC):
    """Delivers breach notifications. Must not raise."""

    @abstractmethod
    async def notify_breach(self, notification: BreachNotification) -> bool:
        pass


class EmailNotificationSink(NotificationSink):
    """Emails the owning user; the address is resolved from the users table."""

    def __init__(self, email_service: Optional[EmailService] = None, session_factory=async_session):
        self.email_service = email_service or EmailService()
        self.session_factory = session_factory

    async def _resolve_email(self, user_id: UUID) -> Optional[str]:
        async with self.session_factory() as db:
            result = await db.execute(select(User.email).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def notify_breach(self, notification: BreachNotification) -> bool:
        try:
            to_email = await self._resolve_email(notification.user_id)
            if not to_email:
                logger.warning("notification_user_email_missing", user_id=str(notification.user_id))
                record_notification("email", "skipped")
                return False

            sent = await self.email_service.send_breach_alert(
                to_email=to_email,
                subject_value=notification.subject_value,
                subject_type=notification.subject_type,
                source_name=notification.source_name,
                source_date=notification.source_date,
                payload=notification.payload,
            )
        except Exception as e:
            logger.error(
                "breach_notification_failed",
                user_id=str(notification.user_id),
                source=notification.source_name,
                error=str(e),
            )
            record_notification("email", "failed")
            return False

        record_notification("email", "sent" if sent else "failed")
        return sent


# ============== WORKFLOW COMPLETION ==============

@dataclass
class CompletionEvent:
    """Delivered once per completed workflow job."""
    investigation_id: UUID
    finding_id: UUID
    workorderid: str
    data: dict
    message: str = ""
    attempts: int = 0


CompletionCallback = Callable[[CompletionEvent], Union[Awaitable[Any], Any]]


def total_data_points(data: dict) -> int:
    summary = data.get("summary") or {}
    return sum(
        int(summary.get(key) or 0)
        for key in ("totalEmails", "totalPhones", "totalAddresses", "totalSocialProfiles")
    )


def compose_completion_message(data: dict) -> str:
    """Human summary of a terminal workflow payload."""
    person_count = int(data.get("personCount") or len(data.get("persons") or []))
    return f"Found {person_count} person(s) with {total_data_points(data)} total data points"


async def deliver_completion(callback: Optional[CompletionCallback], event: CompletionEvent) -> bool:
    """Invoke a sync or async completion callback, logging any failure."""
    if callback is None:
        logger.info("completion_without_observer", workorderid=event.workorderid, summary=event.message)
        return True
    try:
        result = callback(event)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.error(
            "completion_callback_failed",
            workorderid=event.workorderid,
            finding_id=str(event.finding_id),
            error=str(e),
        )
        record_notification("completion", "failed")
        return False

    if result is False:
        logger.warning("completion_not_delivered", workorderid=event.workorderid)
        record_notification("completion", "failed")
        return False

    record_notification("completion", "sent")
    return True


class EmailCompletionSink:
    """Completion callback that emails the investigation owner the summary."""

    def __init__(self, email_service: Optional[EmailService] = None, session_factory=async_session):
        self.email_service = email_service or EmailService()
        self.session_factory = session_factory

    async def _resolve_owner(self, investigation_id: UUID) -> Optional[tuple[str, str]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(User.email, Investigation.target)
                .join(Investigation, Investigation.user_id == User.id)
                .where(Investigation.id == investigation_id)
            )
            row = result.first()
            return (row.email, row.target) if row else None

    async def __call__(self, event: CompletionEvent) -> bool:
        owner = await self._resolve_owner(event.investigation_id)
        if owner is None:
            logger.warning("completion_owner_missing", investigation_id=str(event.investigation_id))
            return False

        to_email, target = owner
        sent = await self.email_service.send_workflow_complete(
            to_email=to_email,
            investigation_id=str(event.investigation_id),
            target=target,
            message=event.message,
        )
        logger.info(
            "completion_notified",
            investigation_id=str(event.investigation_id),
            workorderid=event.workorderid,
            sent=sent,
        )
        return sent
