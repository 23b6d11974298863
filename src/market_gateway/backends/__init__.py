# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Key/value store backends for the gateway.

Available backends:
- BaseBackend: Abstract base class defining the store interface
- MemoryBackend: In-memory store for tests and single-process use
- RedisBackend: Redis store for restart durability (requires redis)

Supporting types:
- HealthCheckResult: Structured result from backend health checks
- validate_ttl: Utility function for validating TTL arguments

Note: RedisBackend is lazily imported so that importing MemoryBackend does
not pull in the redis client.
"""

from typing import TYPE_CHECKING, cast

from market_gateway.backends.base import (
    TTL_MISSING,
    TTL_PERSISTENT,
    BaseBackend,
    HealthCheckResult,
    validate_ttl,
)
from market_gateway.backends.memory import MemoryBackend

if TYPE_CHECKING:
    from market_gateway.backends.redis import RedisBackend

__all__ = [
    "TTL_MISSING",
    "TTL_PERSISTENT",
    "BaseBackend",
    "HealthCheckResult",
    "MemoryBackend",
    "RedisBackend",
    "validate_ttl",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis backend."""
    if name == "RedisBackend":
        from market_gateway.backends import redis as redis_module

        return cast(type, redis_module.RedisBackend)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
