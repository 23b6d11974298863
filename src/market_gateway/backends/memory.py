# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryBackend for the market-data gateway

This module provides an in-memory key/value store that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import heapq
import logging
import math
import time
from collections.abc import Callable

from ..exceptions import BackendOperationError
from .base import (
    TTL_MISSING,
    TTL_PERSISTENT,
    BaseBackend,
    HealthCheckResult,
    validate_ttl,
)

logger = logging.getLogger(__name__)


class MemoryBackend(BaseBackend):
    """
    An in-memory key/value store with Redis-like expiry semantics.

    Key Features:
    - Pure in-memory dict-based storage
    - TTL support with lazy, heap-ordered expiry
    - Async-safe operations using asyncio.Lock
    - Injectable clock so tests can advance time deterministically

    Note:
        State is lost when the process exits, so a queue snapshot stored
        here only survives a restart of the gateway object, not of the
        interpreter. Use RedisBackend for restart durability.
    """

    def __init__(
        self,
        namespace: str = "market_gateway_memory",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the in-memory backend.

        Args:
            namespace: Namespace for key isolation (for compatibility)
            clock: Callable returning the current time in seconds
        """
        super().__init__(namespace)
        self._clock = clock

        # Format: Dict[key, Tuple[value, Optional[expiry_timestamp]]]
        self._data: dict[str, tuple[str, float | None]] = {}

        # Expiration heap for O(log n) cleanup of expired entries
        # Format: List[Tuple[expiry_time, key]]
        self._expiration_heap: list[tuple[float, str]] = []

        self._lock = asyncio.Lock()

        logger.debug(f"Initialized MemoryBackend with namespace '{namespace}'")

    def _is_expired(self, expiry: float | None) -> bool:
        if expiry is None:
            return False
        return self._clock() >= expiry

    def _track_expiry(self, key: str, expiry: float) -> None:
        heapq.heappush(self._expiration_heap, (expiry, key))

    def _cleanup_expired_from_heap(self) -> int:
        """
        Remove expired entries using the expiration heap.

        Uses lazy deletion: heap entries may reference keys that have already
        been deleted or had their expiry updated. These stale entries are
        validated against the primary storage and skipped if no longer valid.

        IMPORTANT: Must be called while holding self._lock.

        Returns:
            Number of entries actually removed.
        """
        now = self._clock()
        removed = 0

        while self._expiration_heap:
            expiry, key = self._expiration_heap[0]
            if expiry > now:
                break

            heapq.heappop(self._expiration_heap)

            entry = self._data.get(key)
            if entry is None:
                continue

            # Only delete when the expiry was not re-armed since
            if entry[1] == expiry:
                del self._data[key]
                removed += 1
                logger.debug(f"Cleaned up expired key: {key}")

        return removed

    def _get_live_locked(self, key: str) -> tuple[str, float | None] | None:
        self._cleanup_expired_from_heap()
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._is_expired(entry[1]):
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._get_live_locked(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        validate_ttl(ttl)
        async with self._lock:
            expiry = self._clock() + ttl if ttl is not None else None
            self._data[key] = (value, expiry)
            if expiry is not None:
                self._track_expiry(key, expiry)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if self._get_live_locked(key) is None:
                return False
            del self._data[key]
            return True

    async def incr(self, key: str) -> int:
        async with self._lock:
            entry = self._get_live_locked(key)
            if entry is None:
                value, expiry = "0", None
            else:
                value, expiry = entry

            try:
                new_value = int(value) + 1
            except ValueError as e:
                raise BackendOperationError(
                    f"Value at '{key}' is not an integer: {value!r}"
                ) from e

            self._data[key] = (str(new_value), expiry)
            return new_value

    async def expire(self, key: str, ttl: int) -> bool:
        validate_ttl(ttl)
        async with self._lock:
            entry = self._get_live_locked(key)
            if entry is None:
                return False
            expiry = self._clock() + ttl
            self._data[key] = (entry[0], expiry)
            self._track_expiry(key, expiry)
            return True

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._get_live_locked(key) is not None

    async def ttl(self, key: str) -> int:
        async with self._lock:
            entry = self._get_live_locked(key)
            if entry is None:
                return TTL_MISSING
            if entry[1] is None:
                return TTL_PERSISTENT
            return math.ceil(entry[1] - self._clock())

    async def clear(self) -> None:
        """Remove every key."""
        async with self._lock:
            self._data.clear()
            self._expiration_heap.clear()
            logger.debug("Cleared all keys")

    async def health_check(self) -> HealthCheckResult:
        """Perform a health check on the backend."""
        async with self._lock:
            self._cleanup_expired_from_heap()
            return HealthCheckResult(
                healthy=True,
                backend_type="memory",
                namespace=self.namespace,
                metadata={
                    "keys_count": len(self._data),
                    "pending_expiries": len(self._expiration_heap),
                },
            )
