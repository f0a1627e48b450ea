"""
WATCHTOWER - Breach Monitoring API Routes

Sweep trigger, monitored subjects, and breach alerts.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.api.deps import require_internal_secret
from watchtower.db.database import get_db
from watchtower.db.models import BreachAlert, MonitoredSubject
from watchtower.errors import ConfigurationError
from watchtower.schemas.monitoring import (
    BreachAlertResponse,
    SubjectCreate,
    SubjectResponse,
    SweepResponse,
)
from watchtower.services.breach_monitor import run_sweep

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/breach-monitoring", tags=["breach-monitoring"])


@router.post(
    "/check",
    response_model=SweepResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_internal_secret)],
)
async def check_breach_monitoring():
    """
    Run one sweep over every monitored subject.

    Called by the external scheduler. Per-subject failures are reported in the
    counts, never as an error response.
    """
    try:
        result = await run_sweep()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Sweep failed: {e}")

    return SweepResponse(
        checked=result.checked,
        new_alerts=result.new_alerts,
        skipped=result.skipped,
        failed=result.failed,
    )


@router.post("/subjects", response_model=SubjectResponse, status_code=201)
async def create_subject(
    request: SubjectCreate,
    db: AsyncSession = Depends(get_db),
):
    """Start monitoring a subject. Malformed values are rejected with 422."""
    subject = MonitoredSubject(
        user_id=request.user_id,
        subject_type=request.subject_type,
        subject_value=request.subject_value,
    )
    db.add(subject)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Subject is already monitored")

    await db.refresh(subject)
    logger.info("subject_created", subject_id=str(subject.id), subject_type=subject.subject_type.value)
    return subject


@router.get("/subjects", response_model=list[SubjectResponse])
async def list_subjects(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """List a user's monitored subjects."""
    result = await db.execute(
        select(MonitoredSubject)
        .where(MonitoredSubject.user_id == user_id)
        .order_by(MonitoredSubject.created_at.desc())
    )
    return list(result.scalars().all())


@router.get("/alerts", response_model=list[BreachAlertResponse])
async def list_alerts(
    user_id: UUID,
    unread_only: bool = False,
    subject_id: Optional[UUID] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List a user's breach alerts, newest first."""
    query = select(BreachAlert).where(BreachAlert.user_id == user_id)
    if unread_only:
        query = query.where(BreachAlert.is_read == False)  # noqa: E712
    if subject_id:
        query = query.where(BreachAlert.monitored_subject_id == subject_id)

    result = await db.execute(query.order_by(BreachAlert.created_at.desc()).limit(limit))
    return list(result.scalars().all())
