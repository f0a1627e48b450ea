"""
WATCHTOWER - Breach Provider Client
===================================

LeakCheck v2 lookups for monitored subjects.

The provider is untrusted: every field of the response is parsed leniently and
anything malformed is dropped instead of failing the sweep.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from watchtower.config import get_settings
from watchtower.errors import ConfigurationError, ProviderError
from watchtower.services.http import ResilientHTTPClient

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "leakcheck"

# success=false with one of these errors still answers the question
_NO_MATCH_ERRORS = ("not found", "no results")


class BreachSourceInfo(BaseModel):
    """Entry of the parallel ``sources`` metadata list."""
    model_config = ConfigDict(extra="ignore")

    name: str
    date: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, v):
        if v in (None, ""):
            return None
        return str(v)


class LeakCheckResponse(BaseModel):
    """Lenient view of a LeakCheck query response."""
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    found: int = 0
    error: Optional[str] = None
    sources: list[BreachSourceInfo] = []
    sources_data: dict[str, list[Any]] = {}

    @field_validator("found", mode="before")
    @classmethod
    def coerce_found(cls, v):
        try:
            return max(int(v), 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("sources", mode="before")
    @classmethod
    def drop_bad_sources(cls, v):
        if not isinstance(v, list):
            return []
        return [s for s in v if isinstance(s, dict) and isinstance(s.get("name"), str)]

    @field_validator("sources_data", mode="before")
    @classmethod
    def drop_bad_sources_data(cls, v):
        if not isinstance(v, dict):
            return {}
        return {
            str(name): records
            for name, records in v.items()
            if isinstance(records, list)
        }

    def source_date(self, source_name: str) -> Optional[str]:
        for source in self.sources:
            if source.name == source_name:
                return source.date
        return None


@dataclass
class LookupOutcome:
    """Result of one provider lookup."""
    definitive: bool
    response: LeakCheckResponse = field(default_factory=LeakCheckResponse)
    reason: Optional[str] = None

    @property
    def has_matches(self) -> bool:
        return self.definitive and self.response.found > 0 and bool(self.response.sources_data)


def parse_response(body: Any) -> LookupOutcome:
    """Classify a decoded response body."""
    if not isinstance(body, dict):
        return LookupOutcome(definitive=False, reason="unexpected response shape")

    try:
        parsed = LeakCheckResponse.model_validate(body)
    except ValidationError as e:
        return LookupOutcome(definitive=False, reason=f"malformed response: {e.error_count()} errors")

    if parsed.success:
        return LookupOutcome(definitive=True, response=parsed)

    error = (parsed.error or "").lower()
    if any(marker in error for marker in _NO_MATCH_ERRORS):
        return LookupOutcome(definitive=True, response=LeakCheckResponse(success=True, found=0))

    return LookupOutcome(definitive=False, response=parsed, reason=parsed.error or "provider reported failure")


class LeakCheckClient:
    """Breach provider client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http: Optional[ResilientHTTPClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.leakcheck_api_key
        self.base_url = (base_url or settings.leakcheck_base_url).rstrip("/")
        self.http = http or ResilientHTTPClient(
            max_retries=settings.provider_max_retries,
            timeout=settings.provider_timeout_seconds,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("leakcheck_api_key")

    async def lookup(self, value: str) -> LookupOutcome:
        """
        Query the provider for one subject value.

        Raises:
            ProviderError: the call failed outright (transport, non-2xx, bad JSON)
        """
        self.ensure_configured()

        response = await self.http.get(
            f"{self.base_url}/query/{quote(value, safe='')}",
            PROVIDER_NAME,
            headers={"X-API-Key": self.api_key, "Accept": "application/json"},
        )

        if response is None:
            raise ProviderError(PROVIDER_NAME, "no response from provider")

        if response.status_code >= 400:
            # LeakCheck answers "not found" with a 404 on some plans
            if response.status_code == 404:
                outcome = self._decode(response)
                if outcome is not None and outcome.definitive:
                    return outcome
            raise ProviderError(
                PROVIDER_NAME,
                f"provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        outcome = self._decode(response)
        if outcome is None:
            raise ProviderError(PROVIDER_NAME, "undecodable response body", status_code=response.status_code)
        return outcome

    @staticmethod
    def _decode(response) -> Optional[LookupOutcome]:
        try:
            body = response.json()
        except ValueError:
            return None
        return parse_response(body)
