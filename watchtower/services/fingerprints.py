"""
WATCHTOWER - Fingerprint Store
==============================

Durable novelty detection for breach records.

A fact is identified by its source name plus a stable serialization of its
payload. Key order never matters, so the same record arriving in a different
shape across sweeps maps to the same fingerprint. The breach_alerts table is
the store; its unique (monitored_subject_id, fingerprint) constraint makes
insertion conditional, and the in-sweep known set catches duplicates within a
single noisy provider response.
"""

import hashlib
import json
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.db.models import BreachAlert

logger = structlog.get_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def canonical_payload(record: Any) -> dict:
    """
    Reduce a provider record to the fields that identify the fact.

    Records exposing a canonical ``line`` are reduced to that string alone, so
    volatile metadata next to it cannot change the fingerprint.
    """
    if isinstance(record, dict):
        line = record.get("line")
        if isinstance(line, str) and line:
            return {"line": line}
        return dict(record)
    if isinstance(record, str):
        return {"line": record}
    return {"value": record}


def serialize_payload(payload: Any) -> str:
    """Stable, key-sorted, whitespace-free JSON."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_fingerprint(source_name: str, payload: Any) -> str:
    """SHA-256 of ``<source>:<serialized payload>``."""
    material = f"{source_name}:{serialize_payload(payload)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class FingerprintStore:
    """
    Known-fact lookup and conditional alert insertion for one session.

    ``begin_subject`` loads the durable fingerprints for a subject; every
    fingerprint seen afterwards is accumulated so repeats inside the same
    sweep are recognised without another query.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._known: dict[UUID, set[str]] = {}

    async def load_known(self, subject_id: UUID) -> set[str]:
        result = await self.db.execute(
            select(BreachAlert.fingerprint).where(
                BreachAlert.monitored_subject_id == subject_id
            )
        )
        return set(result.scalars().all())

    async def begin_subject(self, subject_id: UUID) -> None:
        """Snapshot the durable known set for a subject."""
        self._known[subject_id] = await self.load_known(subject_id)

    def forget_subject(self, subject_id: UUID) -> None:
        self._known.pop(subject_id, None)

    def remember(self, subject_id: UUID, fingerprint: str) -> None:
        self._known.setdefault(subject_id, set()).add(fingerprint)

    async def is_known(self, subject_id: UUID, source_name: str, payload: Any) -> bool:
        """True if this fact was recorded for the subject, in an earlier sweep or this one."""
        fingerprint = compute_fingerprint(source_name, payload)
        if subject_id not in self._known:
            await self.begin_subject(subject_id)
        return fingerprint in self._known[subject_id]

    async def insert_if_absent(
        self,
        subject_id: UUID,
        user_id: UUID,
        source_name: str,
        payload: dict,
        source_date: Optional[str] = None,
    ) -> bool:
        """
        Insert a BreachAlert unless one with the same fingerprint exists.

        Returns True only when this call wrote the row. The decision is made by
        the database at insert time, not by an earlier read.
        """
        fingerprint = compute_fingerprint(source_name, payload)
        values = {
            "monitored_subject_id": subject_id,
            "user_id": user_id,
            "breach_source": source_name,
            "breach_date": source_date,
            "breach_data": payload,
            "fingerprint": fingerprint,
            "is_read": False,
        }

        dialect = self.db.get_bind().dialect.name
        insert_fn = _DIALECT_INSERTS.get(dialect)

        if insert_fn is not None:
            stmt = insert_fn(BreachAlert).values(**values).on_conflict_do_nothing(
                index_elements=["monitored_subject_id", "fingerprint"]
            )
            result = await self.db.execute(stmt)
            inserted = result.rowcount == 1
        else:
            inserted = await self._insert_with_savepoint(values)

        self.remember(subject_id, fingerprint)

        if not inserted:
            logger.debug(
                "breach_alert_already_recorded",
                subject_id=str(subject_id),
                source=source_name,
                fingerprint=fingerprint[:12],
            )
        return inserted

    async def _insert_with_savepoint(self, values: dict) -> bool:
        try:
            async with self.db.begin_nested():
                self.db.add(BreachAlert(**values))
            return True
        except IntegrityError:
            return False

