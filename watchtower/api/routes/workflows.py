"""
WATCHTOWER - Workflow API Routes

Dispatch cases to the external workflow, poll it by work order id, and start
or stop background polling for an investigation.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.api.deps import get_supervisor
from watchtower.db.database import get_db
from watchtower.db.models import Investigation
from watchtower.errors import ConfigurationError, ProviderError
from watchtower.schemas.workflows import (
    DispatchRequest,
    FindingResponse,
    PollingStateResponse,
    PollRequest,
)
from watchtower.services.poller import PollingSupervisor
from watchtower.services.workflow import WorkflowClient, dispatch_workflow

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["workflows"])


def get_workflow_client() -> WorkflowClient:
    return WorkflowClient()


async def _require_investigation(db: AsyncSession, investigation_id: UUID) -> Investigation:
    result = await db.execute(select(Investigation).where(Investigation.id == investigation_id))
    investigation = result.scalar_one_or_none()
    if not investigation:
        raise HTTPException(status_code=404, detail="Investigation not found")
    return investigation


@router.post("/api/v1/workflows", response_model=FindingResponse, status_code=201)
async def dispatch(
    request: DispatchRequest,
    db: AsyncSession = Depends(get_db),
    client: WorkflowClient = Depends(get_workflow_client),
):
    """Submit a case and store its finding, complete or pending."""
    await _require_investigation(db, request.investigation_id)

    try:
        client.ensure_configured()
        finding = await dispatch_workflow(db, request.investigation_id, request.search, client=client)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return finding


@router.post("/api/v1/workflows/poll")
async def poll(
    request: PollRequest,
    client: WorkflowClient = Depends(get_workflow_client),
):
    """Check one work order. Always answers; a failure is reported in the body."""
    try:
        client.ensure_configured()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))

    result = await client.check_status(request.workorderid)
    return result.to_dict(request.workorderid)


@router.post("/api/v1/investigations/{investigation_id}/polling", response_model=PollingStateResponse)
async def start_polling(
    investigation_id: UUID,
    db: AsyncSession = Depends(get_db),
    supervisor: PollingSupervisor = Depends(get_supervisor),
):
    """Reconcile background polling with the investigation's current findings."""
    await _require_investigation(db, investigation_id)

    try:
        state = await supervisor.sync_investigation(investigation_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))

    task = supervisor.task(investigation_id)
    if task is not None:
        return PollingStateResponse(**task.to_dict())
    return PollingStateResponse(investigation_id=investigation_id, state=state.value)


@router.delete("/api/v1/investigations/{investigation_id}/polling", response_model=PollingStateResponse)
async def stop_polling(
    investigation_id: UUID,
    supervisor: PollingSupervisor = Depends(get_supervisor),
):
    """Tear down the investigation's polling session, if any."""
    task = supervisor.task(investigation_id)
    supervisor.stop(investigation_id)

    if task is not None:
        return PollingStateResponse(**task.to_dict())
    return PollingStateResponse(investigation_id=investigation_id, state="idle")
