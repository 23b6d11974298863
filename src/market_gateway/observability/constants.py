# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `market_gateway_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Gauges use present-tense descriptive names

Label Best Practices:
    Only `family` (endpoint family: previous_close, news, ...) and `reason`
    (enum: rate_limit, timeout, error) are used as labels. Never label by
    ticker, endpoint path, or request id.
"""

METRIC_PREFIX = "market_gateway"
"""Prefix for all Prometheus metrics in this library."""

CACHE_HITS_TOTAL = f"{METRIC_PREFIX}_cache_hits_total"
"""Fetches answered from the response cache."""

CACHE_MISSES_TOTAL = f"{METRIC_PREFIX}_cache_misses_total"
"""Fetches that had to be queued."""

UPSTREAM_CALLS_TOTAL = f"{METRIC_PREFIX}_upstream_calls_total"
"""Upstream calls attempted."""

REQUESTS_COMPLETED_TOTAL = f"{METRIC_PREFIX}_requests_completed_total"
"""Queued requests that completed successfully."""

REQUESTS_FAILED_TOTAL = f"{METRIC_PREFIX}_requests_failed_total"
"""Queued requests that were permanently rejected."""

REQUEUES_TOTAL = f"{METRIC_PREFIX}_requeues_total"
"""Requests put back in the queue after an upstream 429."""

BUDGET_DEFERRALS_TOTAL = f"{METRIC_PREFIX}_budget_deferrals_total"
"""Drains that stopped because the per-window budget was used up."""

QUEUE_DEPTH = f"{METRIC_PREFIX}_queue_depth"
"""Current number of queued requests."""


__all__ = [
    "BUDGET_DEFERRALS_TOTAL",
    "CACHE_HITS_TOTAL",
    "CACHE_MISSES_TOTAL",
    "METRIC_PREFIX",
    "QUEUE_DEPTH",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUEUES_TOTAL",
    "UPSTREAM_CALLS_TOTAL",
]
