# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
httpx-based client for the upstream market-data API.

Each call is a single GET with the API key appended as the `apiKey` query
parameter, a fixed timeout, and an identifying User-Agent header. Failures
are mapped onto the gateway's UpstreamError hierarchy.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    UpstreamConnectionError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)


def _strip_query(endpoint_path: str) -> str:
    return endpoint_path.split("?", 1)[0]


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid Retry-After header: {value}")
        return None


class HttpxUpstreamClient:
    """
    Upstream client backed by httpx.AsyncClient.

    Example:
        >>> client = HttpxUpstreamClient(api_key="...")
        >>> body = await client.get("/v2/aggs/ticker/AAPL/prev")
        >>> await client.close()
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.polygon.io",
        timeout: float = 10.0,
        user_agent: str = "StockApp/1.0",
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_key: Upstream API key
            base_url: Upstream base URL
            timeout: Per-request timeout in seconds
            user_agent: Value of the User-Agent header
            http_client: Optional pre-configured httpx client (not closed by close())
            transport: Optional transport for the owned client, e.g. httpx.MockTransport
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent

        self._owned_client = http_client is None
        self._client = http_client or httpx.AsyncClient(transport=transport)

    def build_url(self, endpoint_path: str) -> str:
        """Absolute URL for endpoint_path with the API key appended."""
        separator = "&" if "?" in endpoint_path else "?"
        return (
            f"{self.base_url}{endpoint_path}{separator}"
            f"{urlencode({'apiKey': self.api_key})}"
        )

    async def get(
        self, endpoint_path: str, request_options: dict[str, Any] | None = None
    ) -> Any:
        """
        GET endpoint_path and decode the JSON body.

        Args:
            endpoint_path: Route with query string, API key excluded
            request_options: Optional {"headers": {...}, "params": {...}}

        Raises:
            UpstreamRateLimitError: On HTTP 429
            UpstreamTimeoutError: When the call exceeds the timeout
            UpstreamConnectionError: When the upstream cannot be reached
            UpstreamError: On any other non-2xx status or an invalid body
        """
        options = request_options or {}
        endpoint = _strip_query(endpoint_path)
        headers = {**(options.get("headers") or {}), "User-Agent": self.user_agent}

        logger.info(f"Making API request to: {endpoint}")

        # httpx applies the timeout per phase; wait_for bounds the whole call
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    self.build_url(endpoint_path),
                    params=options.get("params"),
                    headers=headers,
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise UpstreamTimeoutError(
                f"Upstream request to {endpoint} timed out after {self.timeout}s",
                endpoint=endpoint,
            ) from e
        except httpx.TransportError as e:
            raise UpstreamConnectionError(
                f"Upstream request to {endpoint} failed: {e}", endpoint=endpoint
            ) from e

        if response.status_code == 429:
            raise UpstreamRateLimitError(
                f"Upstream rate limit hit for {endpoint}",
                endpoint=endpoint,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )

        if response.is_error:
            raise UpstreamError(
                f"Upstream request to {endpoint} failed with status {response.status_code}",
                status_code=response.status_code,
                endpoint=endpoint,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Upstream returned invalid JSON for {endpoint}",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from e

    async def close(self) -> None:
        """Close the underlying httpx client if this object created it."""
        if self._owned_client:
            await self._client.aclose()


__all__ = ["HttpxUpstreamClient"]
