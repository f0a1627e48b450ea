"""
WATCHTOWER - API Dependencies
=============================
FastAPI dependencies for internal trigger endpoints.
"""

import hmac
from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

from watchtower.config import get_settings
from watchtower.services.poller import PollingSupervisor, get_polling_supervisor

logger = structlog.get_logger(__name__)


async def require_internal_secret(
    x_internal_secret: Optional[str] = Header(None),
) -> None:
    """
    Only callers holding the shared internal secret may trigger sweeps.
    An unset secret locks the endpoint.
    """
    expected = get_settings().internal_function_secret
    if not expected or not x_internal_secret or not hmac.compare_digest(x_internal_secret, expected):
        logger.warning("internal_secret_rejected", provided=bool(x_internal_secret))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_supervisor() -> PollingSupervisor:
    """Dependency wrapper so tests can override the supervisor."""
    return get_polling_supervisor()
