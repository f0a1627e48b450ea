"""
WATCHTOWER - Workflow Dispatch Integration Tests
================================================
Test case submission and the finding it leaves behind.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.db.models import Investigation, VerificationStatus, WORKFLOW_AGENT_TYPE
from watchtower.errors import ProviderError
from watchtower.schemas.workflows import SearchData
from watchtower.services.workflow import PollResult, dispatch_workflow, is_pending_payload


def make_client(workorderid, quick_result) -> MagicMock:
    client = MagicMock()
    client.submit_case = AsyncMock(return_value=workorderid)
    client.check_status = AsyncMock(return_value=quick_result)
    return client


class TestDispatchWorkflow:
    """Test dispatching a case to the workflow."""

    @pytest.mark.asyncio
    async def test_pending_after_quick_check(self, db_session: AsyncSession, test_investigation: Investigation):
        client = make_client("wo-42", PollResult(status="pending"))
        search = SearchData(fullName="Jane Doe", email="jane@example.com")

        finding = await dispatch_workflow(db_session, test_investigation.id, search, client=client, quick_check_delay=0)

        assert finding.agent_type == WORKFLOW_AGENT_TYPE
        assert finding.verification_status == VerificationStatus.PENDING
        assert finding.confidence_score is None
        assert finding.data["workorderid"] == "wo-42"
        assert finding.data["searchedFor"] == {"fullName": "Jane Doe", "email": "jane@example.com"}
        assert is_pending_payload(finding.data)
        client.check_status.assert_awaited_once_with("wo-42", search)

    @pytest.mark.asyncio
    async def test_complete_on_quick_check(self, db_session: AsyncSession, test_investigation: Investigation):
        data = {"personCount": 0, "persons": [], "summary": {}}
        client = make_client("wo-42", PollResult(status="complete", data=data))

        finding = await dispatch_workflow(
            db_session, test_investigation.id, SearchData(username="jane"), client=client, quick_check_delay=0
        )

        assert finding.verification_status == VerificationStatus.VERIFIED
        assert finding.confidence_score == 75
        assert finding.data["persons"] == []
        assert finding.data["workorderid"] == "wo-42"

    @pytest.mark.asyncio
    async def test_refused_submission_raises(self, db_session: AsyncSession, test_investigation: Investigation):
        client = make_client(None, PollResult(status="pending"))

        with pytest.raises(ProviderError):
            await dispatch_workflow(
                db_session, test_investigation.id, SearchData(username="jane"), client=client, quick_check_delay=0
            )

        client.check_status.assert_not_awaited()
