# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Gateway metrics.

GatewayMetrics keeps plain in-process counters for get_stats() and mirrors
them into prometheus_client collectors. Each instance owns its own
CollectorRegistry so that several gateways (or tests) can coexist in one
process without duplicate-registration errors.
"""

from __future__ import annotations

import logging
from collections import Counter as TallyCounter
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .constants import (
    BUDGET_DEFERRALS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    QUEUE_DEPTH,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUEUES_TOTAL,
    UPSTREAM_CALLS_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass
class GatewayMetrics:
    """
    Counters describing gateway activity.

    Example:
        >>> metrics = GatewayMetrics()
        >>> metrics.record_cache_hit("news")
        >>> metrics.cache_hits
        1
    """

    cache_hits: int = 0
    cache_misses: int = 0
    upstream_calls: int = 0
    requests_completed: int = 0
    requests_failed: int = 0
    requeues: int = 0
    budget_deferrals: int = 0
    queue_depth: int = 0
    failures_by_reason: TallyCounter[str] = field(default_factory=TallyCounter)

    registry: CollectorRegistry = field(
        default_factory=CollectorRegistry, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self._cache_hits = Counter(
            CACHE_HITS_TOTAL,
            "Fetches answered from the response cache",
            ["family"],
            registry=self.registry,
        )
        self._cache_misses = Counter(
            CACHE_MISSES_TOTAL,
            "Fetches that had to be queued",
            ["family"],
            registry=self.registry,
        )
        self._upstream_calls = Counter(
            UPSTREAM_CALLS_TOTAL,
            "Upstream calls attempted",
            ["family"],
            registry=self.registry,
        )
        self._completed = Counter(
            REQUESTS_COMPLETED_TOTAL,
            "Queued requests completed successfully",
            ["family"],
            registry=self.registry,
        )
        self._failed = Counter(
            REQUESTS_FAILED_TOTAL,
            "Queued requests permanently rejected",
            ["family", "reason"],
            registry=self.registry,
        )
        self._requeues = Counter(
            REQUEUES_TOTAL,
            "Requests requeued after an upstream 429",
            ["family"],
            registry=self.registry,
        )
        self._deferrals = Counter(
            BUDGET_DEFERRALS_TOTAL,
            "Drains stopped by the per-window budget",
            registry=self.registry,
        )
        self._queue_depth = Gauge(
            QUEUE_DEPTH,
            "Current number of queued requests",
            registry=self.registry,
        )

    def record_cache_hit(self, family: str) -> None:
        self.cache_hits += 1
        self._cache_hits.labels(family=family).inc()

    def record_cache_miss(self, family: str) -> None:
        self.cache_misses += 1
        self._cache_misses.labels(family=family).inc()

    def record_upstream_call(self, family: str) -> None:
        self.upstream_calls += 1
        self._upstream_calls.labels(family=family).inc()

    def record_completion(self, family: str) -> None:
        self.requests_completed += 1
        self._completed.labels(family=family).inc()

    def record_failure(self, family: str, reason: str) -> None:
        self.requests_failed += 1
        self.failures_by_reason[reason] += 1
        self._failed.labels(family=family, reason=reason).inc()

    def record_requeue(self, family: str) -> None:
        self.requeues += 1
        self._requeues.labels(family=family).inc()

    def record_budget_deferral(self) -> None:
        self.budget_deferrals += 1
        self._deferrals.inc()

    def set_queue_depth(self, depth: int) -> None:
        self.queue_depth = depth
        self._queue_depth.set(depth)

    def get_stats(self) -> dict[str, Any]:
        """Plain-dict snapshot suitable for JSON serialization."""
        total_lookups = self.cache_hits + self.cache_misses
        return {
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_ratio": self.cache_hits / total_lookups if total_lookups else 0.0,
            "upstream_calls": self.upstream_calls,
            "requests_completed": self.requests_completed,
            "requests_failed": self.requests_failed,
            "failures_by_reason": dict(self.failures_by_reason),
            "requeues": self.requeues,
            "budget_deferrals": self.budget_deferrals,
            "queue_depth": self.queue_depth,
        }

    def export(self) -> bytes:
        """Prometheus text exposition of this instance's registry."""
        return generate_latest(self.registry)


__all__ = ["GatewayMetrics"]
