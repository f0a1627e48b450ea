"""
WATCHTOWER - Resilient HTTP Client
==================================

Shared HTTP access for the external providers.

Features:
- Exponential backoff with jitter on 5xx and transport errors
- 4xx responses (including 429 quota responses) are returned, never retried
- Injectable httpx transport for tests
"""

import asyncio
import random
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class ResilientHTTPClient:
    """
    HTTP client with retry logic.

    Returns the last response received (a 5xx once retries are exhausted),
    or None when no attempt got a response at all.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.transport = transport

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and jitter."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        # Add jitter (±25%)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return delay + jitter

    async def request(
        self,
        method: str,
        url: str,
        service: str,
        **kwargs,
    ) -> Optional[httpx.Response]:
        """
        Make HTTP request with retry.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            service: Service name used in log events
            **kwargs: Additional arguments for httpx

        Returns:
            Response, or None if no attempt got past the transport
        """
        last_error = None
        last_response = None

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.request(method, url, **kwargs)

                if response.status_code < 500:
                    return response

                last_response = response
                last_error = f"HTTP {response.status_code}"

            except httpx.TimeoutException as e:
                last_error = f"Timeout: {e}"
            except httpx.TransportError as e:
                last_error = f"Transport error: {e}"

            if attempt < self.max_retries:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    "request_retry",
                    service=service,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=last_error,
                )
                await asyncio.sleep(delay)

        logger.error(
            "request_failed",
            service=service,
            error=last_error,
        )
        # Server errors are surfaced so the caller can log the status code
        return last_response

    async def post(self, url: str, service: str, **kwargs) -> Optional[httpx.Response]:
        """POST request with retry."""
        return await self.request("POST", url, service, **kwargs)

    async def get(self, url: str, service: str, **kwargs) -> Optional[httpx.Response]:
        """GET request with retry."""
        return await self.request("GET", url, service, **kwargs)
