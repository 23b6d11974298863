# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisBackend for the market-data gateway

This module provides the Redis-backed key/value store used in production.
It is what makes the queue snapshot and the rate counter survive a process
restart.

Key Features:
- Lazy connection with a per-backend connection pool
- Namespaced keys so several gateways can share one Redis
- Redis errors translated into BackendConnectionError/BackendOperationError
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import (
    ConnectionError,
    RedisError,
    TimeoutError,
)

from ..exceptions import BackendConnectionError, BackendOperationError
from .base import BaseBackend, HealthCheckResult, validate_ttl

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisBackend(BaseBackend):
    """
    Redis implementation of the gateway key/value store.

    Values are stored as plain strings (decode_responses=True). Every key is
    prefixed with the namespace, so "polygon_api_counter" lives at
    "market_gateway:polygon_api_counter" by default.

    Example:
        >>> backend = RedisBackend("redis://localhost:6379/0")
        >>> await backend.set("greeting", "hello", ttl=60)
        >>> await backend.get("greeting")
        'hello'
        >>> await backend.close()
    """

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        namespace: str = "market_gateway",
        max_connections: int = 10,
        socket_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the Redis backend.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to REDIS_URL
                environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured async Redis client. The backend
                does not close clients it did not create.
            namespace: Namespace prefix for keys. Empty string disables prefixing.
            max_connections: Maximum connections in the pool
            socket_timeout: Socket connect/read timeout in seconds

        Environment Variables:
            REDIS_URL: Default Redis connection URL when redis_url parameter is not provided.
        """
        super().__init__(namespace)

        self.redis_url = (
            redis_url or os.environ.get("REDIS_URL") or "redis://localhost:6379"
        )
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout

        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None
        self._pool: ConnectionPool | None = None
        self._connection_lock = asyncio.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    async def _ensure_connected(self) -> Any:
        """Create the client on first use."""
        if self._redis is not None:
            return self._redis

        async with self._connection_lock:
            if self._redis is None:
                self._pool = ConnectionPool.from_url(
                    self.redis_url,
                    max_connections=self.max_connections,
                    decode_responses=True,
                    socket_connect_timeout=self.socket_timeout,
                    socket_timeout=self.socket_timeout,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                self._redis = Redis(connection_pool=self._pool)
                logger.info(f"Created Redis connection pool for {self._safe_url()}")
        return self._redis

    def _safe_url(self) -> str:
        # Strip credentials before logging
        if "@" in self.redis_url:
            scheme, _, rest = self.redis_url.partition("://")
            return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
        return self.redis_url

    async def _run(self, operation: str, func: Callable[[Any], Awaitable[T]]) -> T:
        """Run a Redis command, translating redis-py errors."""
        try:
            client = await self._ensure_connected()
            return await func(client)
        except (ConnectionError, TimeoutError, OSError) as e:
            raise BackendConnectionError(
                f"Redis unavailable during {operation}: {e}"
            ) from e
        except RedisError as e:
            raise BackendOperationError(f"Redis {operation} failed: {e}") from e

    async def get(self, key: str) -> str | None:
        result = await self._run("GET", lambda r: r.get(self._key(key)))
        return None if result is None else str(result)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        validate_ttl(ttl)
        await self._run("SET", lambda r: r.set(self._key(key), value, ex=ttl))

    async def delete(self, key: str) -> bool:
        removed = await self._run("DEL", lambda r: r.delete(self._key(key)))
        return bool(removed)

    async def incr(self, key: str) -> int:
        result = await self._run("INCR", lambda r: r.incr(self._key(key)))
        return int(result)

    async def expire(self, key: str, ttl: int) -> bool:
        validate_ttl(ttl)
        result = await self._run("EXPIRE", lambda r: r.expire(self._key(key), ttl))
        return bool(result)

    async def exists(self, key: str) -> bool:
        result = await self._run("EXISTS", lambda r: r.exists(self._key(key)))
        return bool(result)

    async def ttl(self, key: str) -> int:
        result = await self._run("TTL", lambda r: r.ttl(self._key(key)))
        return int(result)

    async def health_check(self) -> HealthCheckResult:
        """Perform health check on the backend."""
        try:
            await self._run("PING", lambda r: r.ping())
            return HealthCheckResult(
                healthy=True,
                backend_type="redis",
                namespace=self.namespace,
                metadata={"redis_url": self._safe_url()},
            )
        except (BackendConnectionError, BackendOperationError) as e:
            return HealthCheckResult(
                healthy=False,
                backend_type="redis",
                namespace=self.namespace,
                error=str(e),
            )

    async def close(self) -> None:
        """Close the client and pool if this backend created them."""
        if self._redis is not None and self._owned_redis:
            try:
                await self._redis.aclose()
                if self._pool is not None:
                    await self._pool.aclose()
            except (RedisError, OSError) as e:
                logger.error(f"Error during Redis cleanup: {e}")
            finally:
                self._redis = None
                self._pool = None

    async def __aenter__(self) -> "RedisBackend":
        """Async context manager entry."""
        await self._ensure_connected()
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
