# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for the upstream market-data client."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class UpstreamClient(Protocol):
    """
    Minimal protocol the gateway needs from an upstream HTTP client.

    Implementations perform one GET per call and classify failures:
    UpstreamRateLimitError for 429, other UpstreamError subclasses for
    everything else. The gateway relies on that split to decide between
    requeueing and rejecting.
    """

    async def get(
        self, endpoint_path: str, request_options: dict[str, Any] | None = None
    ) -> Any:
        """Fetch endpoint_path and return the decoded JSON body."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
