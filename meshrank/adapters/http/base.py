"""
Service Client Base - Shared httpx plumbing for remote collaborators.

Features:
- Lazy AsyncClient creation
- Retries with exponential backoff on transport errors, 429 and 5xx
- Failures surface as CollaboratorError once retries are exhausted
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from meshrank.config.errors import CollaboratorError

logger = logging.getLogger(__name__)

__all__ = ["ServiceClient", "is_retryable"]


def is_retryable(error: BaseException) -> bool:
    """Transport failures, rate limiting and server errors are worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


class ServiceClient:
    """Base class for JSON-over-HTTP collaborators."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: Service URL
            timeout: Request timeout in seconds
            max_attempts: Attempts per call, including the first
            backoff: Exponential backoff multiplier in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff, max=8),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(path, json=payload)
                    response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("%s request to %s failed: %s", self.service_name, path, e)
            raise CollaboratorError(
                f"{self.service_name} request failed: {e}",
                {"path": path},
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(
                f"{self.service_name} returned invalid JSON", {"path": path}
            ) from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
