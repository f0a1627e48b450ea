"""
WATCHTOWER - Breach Monitoring Service
======================================

Sweeps every monitored subject against the breach provider and records each
previously unseen breach record as exactly one BreachAlert.

Per subject:
- lookups that fail outright are skipped without advancing last_checked_at,
  so the next sweep retries
- a definitive answer (matches or none) advances last_checked_at
- alerts are inserted with insert-if-absent semantics and committed before
  the owner is notified; a failed notification never undoes an alert
- any error is contained to the subject that raised it
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.db.database import async_session
from watchtower.db.models import MonitoredSubject
from watchtower.errors import ProviderError, SubjectValidationError
from watchtower.monitoring.alerts import send_sweep_failure_alert
from watchtower.monitoring.metrics import record_breach_alert, record_subject_check, record_sweep
from watchtower.schemas.monitoring import validate_subject_value
from watchtower.services.fingerprints import FingerprintStore, canonical_payload
from watchtower.services.leakcheck import LeakCheckClient
from watchtower.services.notifications import (
    BreachNotification,
    EmailNotificationSink,
    NotificationSink,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubjectSnapshot:
    """Plain copy of a subject row, safe to use after a rollback."""
    id: UUID
    user_id: UUID
    subject_type: str
    subject_value: str


@dataclass
class SweepResult:
    checked: int = 0
    new_alerts: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "newAlerts": self.new_alerts,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class BreachScanner:
    """
    Stateless scanner over the monitored_subjects table.

    Everything it knows about earlier sweeps is read from the store.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[LeakCheckClient] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.db = db
        self.provider = provider or LeakCheckClient()
        self.notifier = notifier or EmailNotificationSink()
        self.fingerprints = FingerprintStore(db)

    async def scan_all(self) -> SweepResult:
        """
        Run one sweep over all monitored subjects.

        Raises:
            ConfigurationError: provider credential missing; nothing was processed
        """
        self.provider.ensure_configured()

        subjects = await self._load_subjects()
        logger.info("breach_sweep_started", subjects=len(subjects))

        result = SweepResult()
        for subject in subjects:
            result.checked += 1
            try:
                outcome, created = await self.scan_subject(subject)
            except Exception as e:
                await self.db.rollback()
                self.fingerprints.forget_subject(subject.id)
                result.failed += 1
                record_subject_check("error")
                logger.error(
                    "subject_check_failed",
                    subject_id=str(subject.id),
                    error=str(e),
                    exc_info=True,
                )
                continue

            record_subject_check(outcome)
            if outcome in ("skipped", "invalid"):
                result.skipped += 1
            result.new_alerts += created

        logger.info("breach_sweep_completed", **result.to_dict())
        return result

    async def scan_subject(self, subject: SubjectSnapshot) -> tuple[str, int]:
        """
        Check one subject. Returns (outcome, alerts created).

        Outcomes: ``invalid``, ``skipped``, ``clean``, ``matched``.
        """
        log = logger.bind(subject_id=str(subject.id), subject_type=subject.subject_type)

        try:
            validate_subject_value(subject.subject_type, subject.subject_value)
        except SubjectValidationError as e:
            log.warning("subject_invalid", **e.to_dict())
            return "invalid", 0

        try:
            lookup = await self.provider.lookup(subject.subject_value)
        except ProviderError as e:
            log.warning("provider_lookup_failed", error=str(e), status_code=e.status_code)
            return "skipped", 0

        if not lookup.definitive:
            log.warning("provider_lookup_inconclusive", reason=lookup.reason)
            return "skipped", 0

        if not lookup.has_matches:
            await self._mark_checked(subject.id)
            await self.db.commit()
            log.debug("subject_clean")
            return "clean", 0

        response = lookup.response
        await self.fingerprints.begin_subject(subject.id)
        notifications: list[BreachNotification] = []

        for source_name, records in response.sources_data.items():
            source_date = response.source_date(source_name)
            for record in records:
                payload = canonical_payload(record)
                if await self.fingerprints.is_known(subject.id, source_name, payload):
                    continue

                inserted = await self.fingerprints.insert_if_absent(
                    subject_id=subject.id,
                    user_id=subject.user_id,
                    source_name=source_name,
                    payload=payload,
                    source_date=source_date,
                )
                if not inserted:
                    continue

                notifications.append(BreachNotification(
                    user_id=subject.user_id,
                    subject_value=subject.subject_value,
                    subject_type=subject.subject_type,
                    source_name=source_name,
                    source_date=source_date,
                    payload=payload,
                ))

        await self._mark_checked(subject.id)
        await self.db.commit()
        self.fingerprints.forget_subject(subject.id)

        for notification in notifications:
            record_breach_alert(notification.source_name)
            log.info("breach_alert_created", source=notification.source_name)
            await self._notify(notification)

        return "matched", len(notifications)

    async def _notify(self, notification: BreachNotification) -> None:
        try:
            delivered = await self.notifier.notify_breach(notification)
        except Exception as e:
            delivered = False
            logger.error("breach_notification_error", source=notification.source_name, error=str(e))
        if not delivered:
            logger.warning(
                "breach_notification_not_delivered",
                user_id=str(notification.user_id),
                source=notification.source_name,
            )

    async def _load_subjects(self) -> list[SubjectSnapshot]:
        result = await self.db.execute(
            select(MonitoredSubject).order_by(MonitoredSubject.created_at)
        )
        return [
            SubjectSnapshot(
                id=s.id,
                user_id=s.user_id,
                subject_type=s.subject_type.value if hasattr(s.subject_type, "value") else str(s.subject_type),
                subject_value=s.subject_value,
            )
            for s in result.scalars().all()
        ]

    async def _mark_checked(self, subject_id: UUID) -> None:
        await self.db.execute(
            update(MonitoredSubject)
            .where(MonitoredSubject.id == subject_id)
            .values(last_checked_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )


async def run_sweep(
    session_factory=async_session,
    provider: Optional[LeakCheckClient] = None,
    notifier: Optional[NotificationSink] = None,
) -> SweepResult:
    """
    Run one sweep in its own session, as scheduled triggers do.

    A sweep-level failure is recorded, alerted on, and re-raised.
    """
    started = time.monotonic()
    try:
        async with session_factory() as db:
            scanner = BreachScanner(db, provider=provider, notifier=notifier)
            result = await scanner.scan_all()
    except Exception as e:
        record_sweep("failed", time.monotonic() - started)
        logger.error("breach_sweep_failed", error=str(e))
        await send_sweep_failure_alert(str(e))
        raise

    record_sweep("completed", time.monotonic() - started)
    return result
