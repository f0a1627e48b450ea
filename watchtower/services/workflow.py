"""
WATCHTOWER - External Workflow Client
=====================================

Submits people-search cases to the long-running external workflow and reads
their results back by work order id.

The status endpoint answers in one of three ways, normalized by
``check_status``:
- still generating  -> PollResult(status="pending")
- result array      -> PollResult(status="complete", data=<normalized payload>)
- anything failing  -> PollResult(status="error")
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from watchtower.config import get_settings
from watchtower.db.models import Finding, VerificationStatus, WORKFLOW_AGENT_TYPE
from watchtower.errors import ConfigurationError, ProviderError
from watchtower.schemas.workflows import SearchData
from watchtower.services.http import ResilientHTTPClient

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "workflow"
SOURCE_LABEL = "Global Findings"

_PENDING_MARKERS = ("still being created", "try again later")
_WORKORDER_RE = re.compile(r"Work Order ID:\s*([a-f0-9-]+)", re.IGNORECASE)


@dataclass
class PollResult:
    status: str
    data: Optional[dict] = None
    message: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.status == "pending"

    @property
    def complete(self) -> bool:
        return self.status == "complete" and self.data is not None

    def to_dict(self, workorderid: str) -> dict:
        if self.complete:
            return {
                "success": True,
                "pending": False,
                "workorderid": workorderid,
                "status": "complete",
                "data": self.data,
            }
        if self.pending:
            return {
                "success": True,
                "pending": True,
                "workorderid": workorderid,
                "message": self.message or "Global Findings are still being generated.",
            }
        return {"success": False, "error": self.message or "Unknown error"}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def normalize_person(person: dict) -> dict:
    return {
        "full_name": person.get("full_name"),
        "firstName": person.get("firstname"),
        "lastName": person.get("lastname"),
        "middleName": person.get("middlename"),
        "age": person.get("age"),
        "confidence": person.get("confidence"),
        "dob": person.get("dob"),
        "dod": person.get("dod"),
        "addresses": [
            {
                "street": addr.get("street1"),
                "street2": addr.get("street2"),
                "city": addr.get("city"),
                "state": addr.get("stateprovince"),
                "zip": addr.get("zippostalcode"),
                "full": addr.get("addressline"),
                "confidence": addr.get("confidence"),
            }
            for addr in _list(person.get("possibleAddresses"))
        ],
        "emails": [
            {"email": e.get("email"), "type": e.get("type"), "confidence": e.get("confidence")}
            for e in _list(person.get("possibleEmail"))
        ],
        "phones": [
            {"phone": p.get("phone"), "confidence": p.get("confidence")}
            for p in _list(person.get("possiblePhone"))
        ],
        "aliases": [n.get("name") for n in _list(person.get("possibleName")) if n.get("name")],
        "socialProfiles": [
            {
                "url": sp.get("profileurl"),
                "username": sp.get("profileusername"),
                "name": sp.get("profilename"),
                "bio": sp.get("bio"),
                "pictureUrl": sp.get("pictureurl"),
                "confidence": sp.get("confidence"),
            }
            for sp in _list(person.get("possibleSocialProfile"))
            if sp.get("profileurl")
        ],
    }


def normalize_results(results: list[dict], search: Optional[SearchData] = None) -> dict:
    """Turn the raw per-person records into the stored terminal payload."""
    people = [r for r in results if isinstance(r, dict)]
    persons = [normalize_person(p) for p in people]

    payload = {
        "source": "PowerAutomate",
        "sourceLabel": SOURCE_LABEL,
        "personCount": len(persons),
        "summary": {
            "totalEmails": sum(len(p["emails"]) for p in persons),
            "totalPhones": sum(len(p["phones"]) for p in persons),
            "totalAddresses": sum(len(p["addresses"]) for p in persons),
            "totalSocialProfiles": sum(len(p["socialProfiles"]) for p in persons),
        },
        "persons": persons,
        "rawResults": people,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if search is not None:
        payload["searchedFor"] = search.model_dump(by_alias=True, exclude_none=True)
    return payload


def is_terminal_payload(data: Any) -> bool:
    """A finding is complete once its payload holds the persons array."""
    return isinstance(data, dict) and isinstance(data.get("persons"), list)


def is_pending_payload(data: Any) -> bool:
    if not isinstance(data, dict) or is_terminal_payload(data):
        return False
    return data.get("pending") is True or data.get("status") == "pending"


class WorkflowClient:
    """Submit and status calls against the external workflow."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        submit_url: Optional[str] = None,
        results_url: Optional[str] = None,
        http: Optional[ResilientHTTPClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.workflow_api_key
        self.submit_url = submit_url if submit_url is not None else settings.workflow_submit_url
        self.results_url = results_url if results_url is not None else settings.workflow_results_url
        # Polls are repeated by the poller itself, so a single attempt each
        self.http = http or ResilientHTTPClient(
            max_retries=0,
            timeout=settings.provider_timeout_seconds,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("workflow_api_key")
        if not self.results_url:
            raise ConfigurationError("workflow_results_url")

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "x-api-key": self.api_key or ""}

    async def check_status(self, workorderid: str, search: Optional[SearchData] = None) -> PollResult:
        """Fetch the status of one work order. Never raises for provider failures."""
        try:
            response = await self.http.post(
                self.results_url,
                PROVIDER_NAME,
                headers=self._headers(),
                json={"workorderid": workorderid},
            )
        except Exception as e:
            logger.error("workflow_poll_exception", workorderid=workorderid, error=str(e))
            return PollResult(status="error", message=str(e))

        if response is None:
            return PollResult(status="error", message="no response from workflow")

        if response.status_code >= 400:
            logger.warning("workflow_poll_http_error", workorderid=workorderid, status_code=response.status_code)
            return PollResult(status="error", message=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return PollResult(status="error", message="undecodable workflow response")

        if isinstance(body, dict):
            message = str(body.get("message") or "")
            if any(marker in message for marker in _PENDING_MARKERS):
                return PollResult(status="pending", message=message)

        if isinstance(body, list) and body:
            logger.info("workflow_results_received", workorderid=workorderid, results=len(body))
            return PollResult(status="complete", data=normalize_results(body, search))

        return PollResult(status="pending", message="Waiting for results")

    async def submit_case(self, search: SearchData) -> Optional[str]:
        """Submit a case; returns the work order id, or None if the workflow refused it."""
        if not self.api_key:
            raise ConfigurationError("workflow_api_key")
        if not self.submit_url:
            raise ConfigurationError("workflow_submit_url")

        body = {
            "typeOfCase": [1],
            "referrerInformation": {
                "firstName": "external",
                "lastName": "watchtower",
                "companyName": "Watchtower",
            },
            "claimantInformation": {
                "typeOfAssignment": 1,
                "username": search.username or "",
                "fullName": search.full_name or "",
                "address": search.address or "",
                "phoneNumber": search.phone or "",
                "email": search.email or "",
            },
        }

        response = await self.http.post(self.submit_url, PROVIDER_NAME, headers=self._headers(), json=body)
        if response is None or response.status_code >= 400:
            logger.error(
                "workflow_submit_failed",
                status_code=response.status_code if response is not None else None,
            )
            return None

        try:
            result = response.json()
        except ValueError:
            logger.error("workflow_submit_undecodable")
            return None

        if not isinstance(result, dict):
            return None
        if result.get("workorderid"):
            return str(result["workorderid"])

        match = _WORKORDER_RE.search(str(result.get("message") or ""))
        if match:
            return match.group(1)
        return None


async def dispatch_workflow(
    db: AsyncSession,
    investigation_id: UUID,
    search: SearchData,
    client: Optional[WorkflowClient] = None,
    quick_check_delay: Optional[float] = None,
) -> Finding:
    """
    Submit a case and record its finding.

    One quick status check follows the submission; the finding is stored
    complete if results are already there, pending with its workorderid
    otherwise.

    Raises:
        ProviderError: the workflow did not accept the case
    """
    client = client or WorkflowClient()
    delay = get_settings().workflow_quick_check_delay_seconds if quick_check_delay is None else quick_check_delay

    workorderid = await client.submit_case(search)
    if not workorderid:
        raise ProviderError(PROVIDER_NAME, "Failed to submit case to workflow")

    logger.info("workflow_case_submitted", investigation_id=str(investigation_id), workorderid=workorderid)

    if delay:
        await asyncio.sleep(delay)
    quick = await client.check_status(workorderid, search)

    if quick.complete:
        finding = Finding(
            investigation_id=investigation_id,
            agent_type=WORKFLOW_AGENT_TYPE,
            source=SOURCE_LABEL,
            data={**quick.data, "workorderid": workorderid, "status": "complete"},
            confidence_score=get_settings().workflow_completion_confidence,
            verification_status=VerificationStatus.VERIFIED,
        )
    else:
        finding = Finding(
            investigation_id=investigation_id,
            agent_type=WORKFLOW_AGENT_TYPE,
            source=SOURCE_LABEL,
            data={
                "pending": True,
                "status": "pending",
                "workorderid": workorderid,
                "searchedFor": search.model_dump(by_alias=True, exclude_none=True),
                "message": "Global Findings are being generated. Results will appear automatically.",
            },
            confidence_score=None,
            verification_status=VerificationStatus.PENDING,
        )

    db.add(finding)
    await db.commit()
    await db.refresh(finding)
    return finding
