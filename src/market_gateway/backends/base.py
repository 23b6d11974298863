# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Backend for the market-data gateway

This module provides the BaseBackend abstract class that defines the
key/value store contract the gateway relies on.

Features:
- String values with optional per-key expiry (TTL)
- Counter operations (increment, re-arm expiry)
- Health checks for monitoring

"""

import abc
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Sentinel results of ttl(), matching the Redis TTL command
TTL_MISSING = -2
TTL_PERSISTENT = -1


@dataclass
class HealthCheckResult:
    """
    Structured health check result for backend monitoring.

    Attributes:
        healthy: Whether the backend is operational
        backend_type: Type of backend (e.g., 'redis', 'memory')
        namespace: Backend namespace
        error: Error message if unhealthy
        metadata: Additional backend-specific information
    """

    healthy: bool
    backend_type: str
    namespace: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


def validate_ttl(ttl: int | None) -> None:
    """
    Validate a TTL argument.

    Args:
        ttl: Expiry in seconds, or None for a key without expiry

    Raises:
        ValueError: If ttl is not a positive integer
    """
    if ttl is None:
        return

    if isinstance(ttl, bool) or not isinstance(ttl, int):
        raise ValueError(f"ttl must be an integer, got {type(ttl).__name__}")

    if ttl <= 0:
        raise ValueError(f"ttl must be positive, got {ttl}")


class BaseBackend(abc.ABC):
    """
    An abstract base class for the durable key/value store behind the gateway.

    The store owns no gateway logic. It provides get/set/delete/increment/
    expire with Redis-like TTL semantics so the rate counter, the queue
    snapshot, and cached upstream responses can share one store.

    Implementations raise BackendConnectionError when the store cannot be
    reached and BackendOperationError when an operation is rejected. The
    gateway decides how to degrade; backends never swallow errors.
    """

    def __init__(self, namespace: str = "market_gateway"):
        """
        Initialize the backend with a namespace for isolation.

        Args:
            namespace: Namespace for isolating keys across different instances
        """
        self.namespace = namespace

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Get the value stored at key.

        Returns:
            The stored string, or None if the key is absent or expired
        """
        pass

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """
        Store value at key, replacing any previous value and expiry.

        Args:
            key: The key to set
            value: The string value to store
            ttl: Optional expiry in seconds
        """
        pass

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns:
            True if a live key was removed
        """
        pass

    @abc.abstractmethod
    async def incr(self, key: str) -> int:
        """
        Increment the integer stored at key by one.

        A missing key is treated as 0. The key's existing expiry is kept.

        Returns:
            The value after the increment

        Raises:
            BackendOperationError: If the stored value is not an integer
        """
        pass

    @abc.abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        """
        Set (or re-arm) the expiry of an existing key.

        Returns:
            True if the key exists and the expiry was set
        """
        pass

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether key holds a live value."""
        pass

    @abc.abstractmethod
    async def ttl(self, key: str) -> int:
        """
        Get the remaining time to live of key in seconds.

        Returns:
            Remaining seconds, TTL_PERSISTENT (-1) if the key has no expiry,
            or TTL_MISSING (-2) if the key does not exist
        """
        pass

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Check backend health."""
        pass

    async def close(self) -> None:  # noqa: B027
        """Release connections held by the backend."""
        pass
