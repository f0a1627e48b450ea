"""
WATCHTOWER - Error Types
========================
Failures that callers are expected to handle explicitly.

Transient provider failures never surface as exceptions; they are logged and
reported as "no new information" by the services that hit them.
"""

from typing import Optional


class ConfigurationError(RuntimeError):
    """A required credential or endpoint is missing. Raised before any work starts."""

    def __init__(self, setting: str, message: Optional[str] = None):
        self.setting = setting
        super().__init__(message or f"{setting.upper()} not configured")


class SubjectValidationError(ValueError):
    """Malformed caller input, reported as a structured failure."""

    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")

    def to_dict(self) -> dict:
        return {"field": self.field, "value": self.value, "reason": self.reason}


class ProviderError(Exception):
    """The external provider did not give a definitive answer."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)
