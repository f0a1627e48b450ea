"""
WATCHTOWER - Database Models
============================
SQLAlchemy models for breach monitoring and investigation findings.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, Enum, Float, ForeignKey, Index, JSON,
    String, Text, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from watchtower.db.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============== ENUMS ==============

class SubjectType(str, PyEnum):
    EMAIL = "email"
    USERNAME = "username"
    PHONE = "phone"
    NAME = "name"


class VerificationStatus(str, PyEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"


# Agent type tag of findings produced by the long-running external workflow
WORKFLOW_AGENT_TYPE = "Power_automate"


# ============== MODELS ==============

class User(Base):
    """
    Owning user account.
    Authentication lives elsewhere; only the delivery address is needed here.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    monitored_subjects = relationship(
        "MonitoredSubject", back_populates="user", cascade="all, delete-orphan"
    )


class MonitoredSubject(Base):
    """
    A tracked identity fact (email, username, phone, name) owned by one user.
    The sweep only ever advances last_checked_at.
    """
    __tablename__ = "monitored_subjects"
    __table_args__ = (
        UniqueConstraint("user_id", "subject_type", "subject_value", name="uq_monitored_subject"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_type: Mapped[SubjectType] = mapped_column(
        Enum(SubjectType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    subject_value: Mapped[str] = mapped_column(String(500), nullable=False)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="monitored_subjects")
    alerts = relationship("BreachAlert", back_populates="monitored_subject", cascade="all, delete-orphan")


class BreachAlert(Base):
    """
    One detected exposure of a subject in one external source.

    (monitored_subject_id, fingerprint) is unique: the database rejects a second
    alert for the same fact, so overlapping sweeps cannot double-alert.
    """
    __tablename__ = "breach_alerts"
    __table_args__ = (
        UniqueConstraint("monitored_subject_id", "fingerprint", name="uq_breach_alert_fingerprint"),
        Index("ix_breach_alerts_user_unread", "user_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    monitored_subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("monitored_subjects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    breach_source: Mapped[str] = mapped_column(String(255), nullable=False)
    breach_date: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    breach_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    monitored_subject = relationship("MonitoredSubject", back_populates="alerts")


class Investigation(Base):
    """An investigation session; parent of findings."""
    __tablename__ = "investigations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="active", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    findings = relationship("Finding", back_populates="investigation", cascade="all, delete-orphan")


class Finding(Base):
    """
    One unit of investigative output, tagged with the agent that produced it.

    Workflow findings carry {"pending": true, "workorderid": ...} in data until
    the poller replaces data with the terminal payload (which has "persons").
    """
    __tablename__ = "findings"
    __table_args__ = (
        Index("ix_findings_investigation_agent", "investigation_id", "agent_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    investigation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("investigations.id", ondelete="CASCADE"), nullable=False
    )
    agent_type: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, values_callable=lambda x: [e.value for e in x]),
        default=VerificationStatus.UNVERIFIED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    investigation = relationship("Investigation", back_populates="findings")
