"""
WATCHTOWER - Notification Unit Tests
====================================
Test completion delivery, message composition and alert emails.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from watchtower.services.email import EmailMessage, EmailService, render_breach_alert, render_workflow_complete
from watchtower.services.notifications import (
    CompletionEvent,
    compose_completion_message,
    deliver_completion,
)


def make_event() -> CompletionEvent:
    return CompletionEvent(
        investigation_id=uuid4(),
        finding_id=uuid4(),
        workorderid="wo-1",
        data={"persons": []},
    )


class TestCompletionMessage:
    """Test completion summary text."""

    def test_counts_people_and_data_points(self):
        data = {
            "personCount": 2,
            "persons": [{}, {}],
            "summary": {"totalEmails": 3, "totalPhones": 2, "totalAddresses": 1, "totalSocialProfiles": 4},
        }

        assert compose_completion_message(data) == "Found 2 person(s) with 10 total data points"

    def test_missing_summary(self):
        assert compose_completion_message({"persons": [{}]}) == "Found 1 person(s) with 0 total data points"


class TestDeliverCompletion:
    """Test callback invocation."""

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        received = []

        assert await deliver_completion(received.append, make_event()) is True
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_async_callback(self):
        callback = AsyncMock()
        event = make_event()

        assert await deliver_completion(callback, event) is True
        callback.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self):
        def callback(event):
            raise RuntimeError("toast failed")

        assert await deliver_completion(callback, make_event()) is False

    @pytest.mark.asyncio
    async def test_no_callback(self):
        assert await deliver_completion(None, make_event()) is True

    @pytest.mark.asyncio
    async def test_undelivered_callback_reports_false(self):
        assert await deliver_completion(AsyncMock(return_value=False), make_event()) is False


class TestBreachAlertEmail:
    """Test breach alert rendering and sending."""

    def test_render_escapes_values(self):
        subject, html = render_breach_alert(
            subject_value="a@x.com",
            subject_type="email",
            source_name="BreachX",
            source_date="2023-05",
            payload={"line": "<script>alert(1)</script>"},
            dashboard_url="https://app.test/breach-monitoring",
        )

        assert subject == "Breach Alert: a@x.com found in BreachX"
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "2023-05" in html

    def test_render_without_date(self):
        _, html = render_breach_alert("a@x.com", "email", "BreachX", None, {}, "https://app.test")

        assert "Breach Date" not in html

    @pytest.mark.asyncio
    async def test_send_breach_alert_uses_provider(self):
        provider = AsyncMock()
        provider.send.return_value = True
        service = EmailService(provider=provider)

        sent = await service.send_breach_alert(
            to_email="owner@example.com",
            subject_value="a@x.com",
            subject_type="email",
            source_name="BreachX",
            source_date=None,
            payload={"line": "a@x.com:pw"},
        )

        assert sent is True
        message: EmailMessage = provider.send.call_args.args[0]
        assert message.to == "owner@example.com"
        assert message.from_email == service.from_email
        assert "BreachX" in message.subject


class TestWorkflowCompleteEmail:
    """Test the completion email sent to investigation owners."""

    def test_render_includes_summary_and_link(self):
        subject, html = render_workflow_complete(
            target="Jane <Doe>",
            message="Found 1 person(s) with 3 total data points",
            investigation_url="https://app.test/investigations/abc",
        )

        assert subject == "Search complete: Jane <Doe>"
        assert "Jane &lt;Doe&gt;" in html
        assert "Found 1 person(s) with 3 total data points" in html
        assert "https://app.test/investigations/abc" in html

    @pytest.mark.asyncio
    async def test_send_workflow_complete_uses_provider(self):
        provider = AsyncMock()
        provider.send.return_value = True
        service = EmailService(provider=provider)

        sent = await service.send_workflow_complete(
            to_email="owner@example.com",
            investigation_id="abc",
            target="Jane Doe",
            message="Found 0 person(s) with 0 total data points",
        )

        assert sent is True
        message: EmailMessage = provider.send.call_args.args[0]
        assert message.to == "owner@example.com"
        assert message.html.count("/investigations/abc") == 1
