# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Gateway core: the queued, rate-limited, cache-backed request service.

Components:
- GatewayService: fetch(), queue draining, lifecycle
- GatewayConfig / RestorePolicy: configuration
- RequestQueue: priority queue with a persisted snapshot
- RateCounter: fixed-window upstream call counter
- ResponseCache: JSON cache with endpoint TTLs
- PeriodicTask / DeferredCalls: background timers
"""

from .cache import MISS, ResponseCache
from .config import GatewayConfig, RestorePolicy
from .queue import RequestQueue
from .rate_counter import RateCounter
from .service import GatewayService
from .tasks import DeferredCalls, PeriodicTask

__all__ = [
    "MISS",
    "DeferredCalls",
    "GatewayConfig",
    "GatewayService",
    "PeriodicTask",
    "RateCounter",
    "RequestQueue",
    "ResponseCache",
    "RestorePolicy",
]
