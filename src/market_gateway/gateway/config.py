# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Gateway Configuration

This module provides the configuration dataclass for the market-data
gateway: rate budget, upstream settings, timers, and store keys.
"""

import os
from dataclasses import dataclass
from enum import Enum

from ..exceptions import ConfigurationError


class RestorePolicy(Enum):
    """What to do with queue records restored from a snapshot at startup.

    Restored records have no waiting caller, since continuations are never
    persisted.

    - SERVICE: Keep them queued and fetch them normally. The response only
      warms the cache; resolution is skipped because nobody is waiting.
    - DROP: Discard them with a logged warning and clear the snapshot.
    """

    SERVICE = "service"
    DROP = "drop"


@dataclass
class GatewayConfig:
    """
    Configuration for the market-data gateway.

    Defaults match the free tier of the upstream provider: five calls per
    rolling minute.
    """

    # === Upstream ===

    api_key: str = ""
    """API key appended to every upstream request as the apiKey query parameter."""

    base_url: str = "https://api.polygon.io"
    """Upstream base URL."""

    request_timeout: float = 10.0
    """Timeout for a single upstream call in seconds."""

    user_agent: str = "StockApp/1.0"
    """Identifying User-Agent header sent with every upstream call."""

    # === Rate Budget ===

    max_requests_per_window: int = 5
    """Maximum upstream calls per counter window."""

    window_seconds: int = 60
    """Length of the rate counter window in seconds."""

    counter_key: str = "polygon_api_counter"
    """Store key of the rate counter."""

    # === Queue ===

    queue_key: str = "polygon_api_queue"
    """Store key of the persisted queue snapshot."""

    queue_snapshot_ttl: int = 3600
    """TTL of the queue snapshot; an older snapshot is presumed stale."""

    max_requeues: int | None = None
    """Maximum 429 bounces per request. None requeues without a ceiling."""

    restore_policy: RestorePolicy = RestorePolicy.SERVICE
    """Handling of records restored from a snapshot."""

    # === Timers ===

    drain_interval: float = 15.0
    """Interval of the periodic background drain in seconds."""

    cooldown_seconds: float = 5.0
    """Delay before the follow-up drain when work remains queued."""

    # === Cache ===

    cache_prefix: str = "polygon"
    """Prefix of response cache keys."""

    # === Metrics ===

    metrics_enabled: bool = True
    """Enable metrics collection."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.max_requests_per_window < 1:
            raise ConfigurationError("max_requests_per_window must be at least 1")
        if self.window_seconds < 1:
            raise ConfigurationError("window_seconds must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.queue_snapshot_ttl < 1:
            raise ConfigurationError("queue_snapshot_ttl must be at least 1")
        if self.drain_interval <= 0:
            raise ConfigurationError("drain_interval must be positive")
        if self.cooldown_seconds < 0:
            raise ConfigurationError("cooldown_seconds must not be negative")
        if self.max_requeues is not None and self.max_requeues < 0:
            raise ConfigurationError("max_requeues must not be negative")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("base_url must be an http(s) URL")
        if not self.queue_key or not self.counter_key:
            raise ConfigurationError("queue_key and counter_key must not be empty")
        self.base_url = self.base_url.rstrip("/")

    @classmethod
    def from_env(cls, **overrides: object) -> "GatewayConfig":
        """
        Build a configuration from environment variables.

        Environment Variables:
            POLYGON_API_KEY: Upstream API key
            POLYGON_BASE_URL: Upstream base URL
            MARKET_GATEWAY_MAX_REQUESTS_PER_MINUTE: Rate budget per window

        Keyword arguments override values read from the environment.
        """
        values: dict[str, object] = {"api_key": os.environ.get("POLYGON_API_KEY", "")}

        base_url = os.environ.get("POLYGON_BASE_URL")
        if base_url:
            values["base_url"] = base_url

        max_requests = os.environ.get("MARKET_GATEWAY_MAX_REQUESTS_PER_MINUTE")
        if max_requests:
            try:
                values["max_requests_per_window"] = int(max_requests)
            except ValueError as e:
                raise ConfigurationError(
                    f"MARKET_GATEWAY_MAX_REQUESTS_PER_MINUTE must be an integer, got {max_requests!r}"
                ) from e

        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


__all__ = [
    "GatewayConfig",
    "RestorePolicy",
]
