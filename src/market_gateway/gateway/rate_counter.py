# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Fixed-window rate counter kept in the key/value store.

One integer key counts upstream calls made in the current window. The key
expires at the end of the window, so an absent key means a fresh window.
"""

import logging

from ..backends.base import BaseBackend
from ..exceptions import BackendConnectionError, BackendOperationError

logger = logging.getLogger(__name__)


class RateCounter:
    """
    Per-window upstream call budget.

    The increment and the expiry re-arm are two separate store operations.
    Re-arming on every increment means a steady burst can postpone the
    window reset, which only ever errs towards fewer upstream calls.

    Attributes:
        key: Store key of the counter
        limit: Maximum calls per window
        window_seconds: Window length and TTL of the key
    """

    def __init__(
        self,
        backend: BaseBackend,
        key: str = "polygon_api_counter",
        limit: int = 5,
        window_seconds: int = 60,
    ) -> None:
        self._backend = backend
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds

    async def initialize(self) -> None:
        """Create the counter at 0 with a full-window TTL if it is absent."""
        try:
            if not await self._backend.exists(self.key):
                await self._backend.set(self.key, "0", ttl=self.window_seconds)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Could not initialize rate counter '{self.key}': {e}")

    async def current(self) -> int:
        """
        Calls made in the current window.

        An unreadable or corrupt counter counts as 0; the counter is
        advisory and must not wedge the queue while the store is down.
        """
        try:
            raw = await self._backend.get(self.key)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Rate counter '{self.key}' unavailable, assuming 0: {e}")
            return 0

        if raw is None:
            return 0

        try:
            return int(raw)
        except ValueError:
            logger.error(f"Rate counter '{self.key}' holds non-integer {raw!r}")
            return 0

    async def has_budget(self) -> bool:
        """Check whether another upstream call fits in the current window."""
        count = await self.current()
        if count >= self.limit:
            logger.info(
                f"Rate limit reached ({count}/{self.limit}). Waiting for counter reset..."
            )
            return False
        return True

    async def increment(self) -> int | None:
        """
        Record one upstream call and re-arm the window expiry.

        Returns:
            The new count, or None if the store could not be updated
        """
        try:
            count = await self._backend.incr(self.key)
        except BackendOperationError as e:
            # A corrupt value would block increments forever; start a new window
            logger.error(f"Resetting corrupt rate counter '{self.key}': {e}")
            count = 1
            try:
                await self._backend.set(self.key, "1", ttl=self.window_seconds)
            except (BackendConnectionError, BackendOperationError) as reset_error:
                logger.warning(f"Failed to reset rate counter: {reset_error}")
                return None
            return count
        except BackendConnectionError as e:
            logger.warning(f"Failed to increment rate counter '{self.key}': {e}")
            return None

        try:
            await self._backend.expire(self.key, self.window_seconds)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Failed to re-arm rate counter expiry: {e}")

        return count

    async def reset(self) -> None:
        """Delete the counter, starting a fresh window."""
        try:
            await self._backend.delete(self.key)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Failed to reset rate counter '{self.key}': {e}")


__all__ = ["RateCounter"]
