# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Core types for the market-data gateway.

This module re-exports the queue record models and the endpoint TTL policy.
"""

from .endpoint import (
    CACHE_TTL_SECONDS,
    EndpointFamily,
    cache_ttl_for_endpoint,
    classify_endpoint,
    normalize_endpoint,
)
from .queue import SNAPSHOT_VERSION, QueueRecord, QueueSnapshot, new_request_id

__all__ = [
    "CACHE_TTL_SECONDS",
    "SNAPSHOT_VERSION",
    "EndpointFamily",
    "QueueRecord",
    "QueueSnapshot",
    "cache_ttl_for_endpoint",
    "classify_endpoint",
    "new_request_id",
    "normalize_endpoint",
]
