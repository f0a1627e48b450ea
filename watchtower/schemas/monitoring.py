"""
WATCHTOWER - Breach Monitoring Schemas
======================================
Pydantic models and subject validation for breach monitoring.
"""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from watchtower.db.models import SubjectType
from watchtower.errors import SubjectValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")
USERNAME_RE = re.compile(r"^[A-Za-z0-9._\-]{1,64}$")


def normalize_phone(value: str) -> str:
    return re.sub(r"[\s().\-]", "", value)


def validate_subject_value(subject_type: str, value: str) -> str:
    """
    Validate and normalize a subject value for its type.

    Raises:
        SubjectValidationError: the value cannot be looked up as that type
    """
    raw = (value or "").strip()
    if not raw:
        raise SubjectValidationError("subject_value", value or "", "value is empty")

    try:
        kind = SubjectType(subject_type)
    except ValueError:
        raise SubjectValidationError("subject_type", str(subject_type), "unsupported subject type")

    if kind == SubjectType.EMAIL:
        if not EMAIL_RE.match(raw):
            raise SubjectValidationError("subject_value", raw, "invalid email format")
        return raw.lower()

    if kind == SubjectType.PHONE:
        digits = normalize_phone(raw)
        if not PHONE_RE.match(digits):
            raise SubjectValidationError("subject_value", raw, "invalid phone number")
        return digits

    if kind == SubjectType.USERNAME:
        if not USERNAME_RE.match(raw):
            raise SubjectValidationError("subject_value", raw, "invalid username")
        return raw

    if len(raw) < 2:
        raise SubjectValidationError("subject_value", raw, "name too short")
    return " ".join(raw.split())


class SubjectCreate(BaseModel):
    """Request to start monitoring a subject."""
    user_id: UUID
    subject_type: SubjectType
    subject_value: str = Field(..., min_length=1, max_length=500)

    @model_validator(mode="after")
    def check_value(self):
        try:
            self.subject_value = validate_subject_value(self.subject_type.value, self.subject_value)
        except SubjectValidationError as e:
            raise ValueError(str(e)) from e
        return self


class SubjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    subject_type: SubjectType
    subject_value: str
    last_checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BreachAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    monitored_subject_id: UUID
    user_id: UUID
    breach_source: str
    breach_date: Optional[str] = None
    breach_data: dict
    is_read: bool
    created_at: Optional[datetime] = None


class SweepResponse(BaseModel):
    """Result of one sweep, in the shape the trigger endpoint returns."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    checked: int
    new_alerts: int = Field(..., alias="newAlerts")
    skipped: int = 0
    failed: int = 0
