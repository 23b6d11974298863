# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
JSON response cache over the key/value store.

Cache-aside helpers for the gateway and the typed market-data helpers.
Store failures degrade to a miss on read and a dropped write; corrupt
payloads are deleted so the next read triggers a fresh fetch.
"""

import json
import logging
from typing import Any

from ..backends.base import BaseBackend
from ..exceptions import BackendConnectionError, BackendOperationError
from ..types.endpoint import cache_ttl_for_endpoint, normalize_endpoint

logger = logging.getLogger(__name__)

# Distinguishes "no entry" from a cached JSON null
MISS = object()


class ResponseCache:
    """
    JSON values with per-key TTL.

    Attributes:
        prefix: Prefix of keys derived from endpoint paths
    """

    def __init__(self, backend: BaseBackend, prefix: str = "polygon") -> None:
        self._backend = backend
        self.prefix = prefix

    def key_for_endpoint(self, endpoint_path: str) -> str:
        """Deterministic cache key for an upstream endpoint path."""
        return f"{self.prefix}:{normalize_endpoint(endpoint_path)}"

    @staticmethod
    def ttl_for_endpoint(endpoint_path: str) -> int:
        return cache_ttl_for_endpoint(endpoint_path)

    async def get_raw(self, key: str) -> str | None:
        """Raw stored text, or None on a miss or store failure."""
        try:
            return await self._backend.get(key)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Cache read failed for '{key}', treating as miss: {e}")
            return None

    async def get_json(self, key: str) -> Any:
        """
        Deserialized value at key, or MISS.

        A value that is not valid JSON is deleted and reported as a miss.
        """
        raw = await self.get_raw(key)
        if raw is None:
            return MISS

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt cache entry at '{key}', deleting: {e}")
            await self.invalidate(key)
            return MISS

    async def set_raw(self, key: str, value: str, ttl: int | None) -> bool:
        try:
            await self._backend.set(key, value, ttl=ttl)
            return True
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Cache write failed for '{key}': {e}")
            return False

    async def set_json(self, key: str, value: Any, ttl: int | None) -> bool:
        """Serialize and store value. Returns False if the store rejected it."""
        return await self.set_raw(key, json.dumps(value), ttl)

    async def invalidate(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except (BackendConnectionError, BackendOperationError) as e:
            logger.warning(f"Failed to delete cache entry '{key}': {e}")


__all__ = ["MISS", "ResponseCache"]
