# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Market Gateway - Rate-limited, cache-backed access to market data.

This library sits between an application and an upstream market-data
provider with a strict per-minute quota. Every upstream call is queued,
drained one at a time under the quota, and cached with an endpoint-specific
lifetime.

Key Features:
    - Priority request queue, persisted so queued work survives a restart
    - Fixed-window rate counter shared through the key/value store
    - Response cache with per-endpoint TTLs
    - Automatic requeue with boosted priority on upstream 429
    - Multiple backend options (memory, Redis)

Quick Start:
    >>> from market_gateway import GatewayConfig, GatewayService, MarketDataGateway
    >>> from market_gateway import RedisBackend
    >>>
    >>> config = GatewayConfig.from_env()
    >>> async with GatewayService(RedisBackend(), config=config) as service:
    ...     market = MarketDataGateway(service)
    ...     body = await market.fetch_previous_day_data("AAPL")

Main Exports:
    - GatewayService, GatewayConfig: Core gateway components
    - MarketDataGateway: Typed market-data helpers
    - MemoryBackend, RedisBackend: Storage backends
    - HttpxUpstreamClient, UpstreamClient: Upstream transport

Note: RedisBackend requires the 'redis' extra. Install with:
    pip install market-gateway[redis]

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .backends import (
    BaseBackend,
    MemoryBackend,
)
from .exceptions import (
    BackendConnectionError,
    BackendOperationError,
    ConfigurationError,
    GatewayError,
    GatewayStoppedError,
    RequeueLimitExceededError,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
)
from .gateway import (
    GatewayConfig,
    GatewayService,
    RestorePolicy,
)
from .market_data import (
    MarketDataGateway,
    PriceQuote,
    SearchResult,
    TrendingStock,
    previous_trading_day,
)
from .observability import GatewayMetrics
from .protocols import UpstreamClient
from .types import (
    EndpointFamily,
    QueueRecord,
    QueueSnapshot,
)
from .upstream import HttpxUpstreamClient

# Lazy import for optional redis backend
if TYPE_CHECKING:
    from .backends import RedisBackend

__all__ = [
    # Exceptions
    "BackendConnectionError",
    "BackendOperationError",
    # Backends
    "BaseBackend",
    "ConfigurationError",
    # Types
    "EndpointFamily",
    # Gateway
    "GatewayConfig",
    "GatewayError",
    "GatewayMetrics",
    "GatewayService",
    "GatewayStoppedError",
    # Upstream
    "HttpxUpstreamClient",
    # Market data
    "MarketDataGateway",
    "MemoryBackend",
    "PriceQuote",
    "QueueRecord",
    "QueueSnapshot",
    "RedisBackend",  # Lazy loaded - requires redis extra
    "RequeueLimitExceededError",
    "RestorePolicy",
    "SearchResult",
    "TrendingStock",
    "UpstreamClient",
    "UpstreamConnectionError",
    "UpstreamError",
    "UpstreamRateLimitError",
    "UpstreamTimeoutError",
    "previous_trading_day",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis backend."""
    if name == "RedisBackend":
        from .backends import RedisBackend

        return RedisBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
