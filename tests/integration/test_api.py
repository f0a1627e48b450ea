"""
WATCHTOWER - API Integration Tests
==================================
Test the HTTP surface with dependency overrides.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import INTERNAL_SECRET, make_subject
from watchtower.db.models import BreachAlert, Finding, Investigation, User, VerificationStatus, WORKFLOW_AGENT_TYPE
from watchtower.errors import ConfigurationError
from watchtower.services.breach_monitor import SweepResult
from watchtower.services.workflow import PollResult


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "watchtower_sweeps_total" in response.text


class TestSweepTrigger:
    """Test the internal sweep trigger endpoint."""

    @pytest.mark.asyncio
    async def test_requires_secret(self, client: AsyncClient):
        response = await client.post("/api/v1/breach-monitoring/check")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/breach-monitoring/check",
            headers={"x-internal-secret": "nope"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_returns_counts(self, client: AsyncClient):
        with patch(
            "watchtower.api.routes.monitoring.run_sweep",
            AsyncMock(return_value=SweepResult(checked=5, new_alerts=2, skipped=1)),
        ):
            response = await client.post(
                "/api/v1/breach-monitoring/check",
                headers={"x-internal-secret": INTERNAL_SECRET},
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "checked": 5, "newAlerts": 2, "skipped": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_missing_provider_key(self, client: AsyncClient):
        with patch(
            "watchtower.api.routes.monitoring.run_sweep",
            AsyncMock(side_effect=ConfigurationError("leakcheck_api_key")),
        ):
            response = await client.post(
                "/api/v1/breach-monitoring/check",
                headers={"x-internal-secret": INTERNAL_SECRET},
            )

        assert response.status_code == 503
        assert response.json()["detail"] == "LEAKCHECK_API_KEY not configured"


class TestSubjects:
    """Test monitored subject endpoints."""

    @pytest.mark.asyncio
    async def test_create_subject(self, client: AsyncClient, test_user: User):
        response = await client.post("/api/v1/breach-monitoring/subjects", json={
            "user_id": str(test_user.id),
            "subject_type": "email",
            "subject_value": "Jane@Example.com",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["subject_value"] == "jane@example.com"
        assert data["subject_type"] == "email"
        assert data["last_checked_at"] is None

    @pytest.mark.asyncio
    async def test_malformed_subject_rejected(self, client: AsyncClient, test_user: User):
        response = await client.post("/api/v1/breach-monitoring/subjects", json={
            "user_id": str(test_user.id),
            "subject_type": "email",
            "subject_value": "jane-at-example",
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_subject_conflict(self, client: AsyncClient, test_user: User):
        body = {"user_id": str(test_user.id), "subject_type": "username", "subject_value": "jane"}

        first = await client.post("/api/v1/breach-monitoring/subjects", json=body)
        second = await client.post("/api/v1/breach-monitoring/subjects", json=body)

        assert first.status_code == 201
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_list_subjects(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        user_id = test_user.id
        await make_subject(db_session, user_id, "a@x.com")

        response = await client.get("/api/v1/breach-monitoring/subjects", params={"user_id": str(user_id)})

        assert response.status_code == 200
        assert [s["subject_value"] for s in response.json()] == ["a@x.com"]


class TestAlerts:
    """Test alert listing."""

    @pytest.mark.asyncio
    async def test_unread_only(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        user_id = test_user.id
        subject_id = await make_subject(db_session, user_id, "a@x.com")
        for fingerprint, is_read in (("f" * 64, False), ("e" * 64, True)):
            db_session.add(BreachAlert(
                monitored_subject_id=subject_id,
                user_id=user_id,
                breach_source="BreachX",
                breach_data={"line": fingerprint[:4]},
                fingerprint=fingerprint,
                is_read=is_read,
            ))
        await db_session.commit()

        all_alerts = await client.get("/api/v1/breach-monitoring/alerts", params={"user_id": str(user_id)})
        unread = await client.get(
            "/api/v1/breach-monitoring/alerts",
            params={"user_id": str(user_id), "unread_only": "true"},
        )

        assert len(all_alerts.json()) == 2
        assert len(unread.json()) == 1
        assert unread.json()[0]["is_read"] is False


class FakeWorkflowClient:
    def __init__(self, result: PollResult):
        self.result = result

    def ensure_configured(self):
        pass

    async def check_status(self, workorderid, search=None):
        return self.result


class TestWorkflowRoutes:
    """Test workflow dispatch, poll and polling control endpoints."""

    @pytest.mark.asyncio
    async def test_poll_pending(self, client: AsyncClient):
        from watchtower.api.routes.workflows import get_workflow_client
        from watchtower.api.server import app

        app.dependency_overrides[get_workflow_client] = lambda: FakeWorkflowClient(
            PollResult(status="pending", message="still being created")
        )

        response = await client.post("/api/v1/workflows/poll", json={"workorderid": "wo-1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "pending": True,
            "workorderid": "wo-1",
            "message": "still being created",
        }

    @pytest.mark.asyncio
    async def test_poll_unconfigured(self, client: AsyncClient):
        from watchtower.api.routes.workflows import get_workflow_client
        from watchtower.api.server import app
        from watchtower.services.workflow import WorkflowClient

        app.dependency_overrides[get_workflow_client] = lambda: WorkflowClient(api_key="", results_url="")

        response = await client.post("/api/v1/workflows/poll", json={"workorderid": "wo-1"})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_dispatch_requires_search_parameter(self, client: AsyncClient, test_investigation: Investigation):
        response = await client.post("/api/v1/workflows", json={
            "investigation_id": str(test_investigation.id),
            "search": {},
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_polling_unknown_investigation(self, client: AsyncClient):
        response = await client.post(f"/api/v1/investigations/{uuid4()}/polling")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_start_and_stop_polling(self, client: AsyncClient, test_investigation: Investigation):
        from watchtower.api.deps import get_supervisor
        from watchtower.api.server import app
        from watchtower.services.poller import PollState

        investigation_id = test_investigation.id
        supervisor = MagicMock()
        supervisor.sync_investigation = AsyncMock(return_value=PollState.IDLE)
        supervisor.task.return_value = None
        app.dependency_overrides[get_supervisor] = lambda: supervisor

        started = await client.post(f"/api/v1/investigations/{investigation_id}/polling")
        stopped = await client.delete(f"/api/v1/investigations/{investigation_id}/polling")

        assert started.status_code == 200
        assert started.json()["state"] == "idle"
        supervisor.sync_investigation.assert_awaited_once_with(investigation_id)
        assert stopped.status_code == 200
        supervisor.stop.assert_called_once_with(investigation_id)

    @pytest.mark.asyncio
    async def test_polling_completion_is_announced_once(
        self, client: AsyncClient, db_session: AsyncSession, session_factory, test_investigation: Investigation
    ):
        from watchtower.api.deps import get_supervisor
        from watchtower.api.server import app
        from watchtower.services.poller import PollingSupervisor, PollState

        investigation_id = test_investigation.id
        db_session.add(Finding(
            investigation_id=investigation_id,
            agent_type=WORKFLOW_AGENT_TYPE,
            data={"pending": True, "workorderid": "wo-9"},
            verification_status=VerificationStatus.PENDING,
        ))
        await db_session.commit()

        announced = []
        supervisor = PollingSupervisor(
            client=FakeWorkflowClient(PollResult(status="complete", data={"personCount": 2, "persons": [{}, {}]})),
            session_factory=session_factory,
            interval=0.01,
            on_complete=announced.append,
        )
        app.dependency_overrides[get_supervisor] = lambda: supervisor

        try:
            first = await client.post(f"/api/v1/investigations/{investigation_id}/polling")
            for _ in range(300):
                if supervisor.state(investigation_id) == PollState.COMPLETED:
                    break
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)
            second = await client.post(f"/api/v1/investigations/{investigation_id}/polling")
        finally:
            await supervisor.shutdown()

        assert first.status_code == 200
        assert first.json()["state"] == "polling"
        assert second.json()["state"] == "completed"
        assert len(announced) == 1
        assert announced[0].message == "Found 2 person(s) with 0 total data points"
