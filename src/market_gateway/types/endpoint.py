# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Endpoint families and their response cache TTLs.

The TTL reflects how volatile each kind of market data is: a previous-day
aggregate does not change during the trading day, ticker metadata changes
rarely, news changes often.
"""

import re
from enum import Enum

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")


class EndpointFamily(Enum):
    """Families of upstream endpoints with distinct cache lifetimes."""

    PREVIOUS_CLOSE = "previous_close"
    TICKER_SEARCH = "ticker_search"
    GROUPED_DAILY = "grouped_daily"
    NEWS = "news"
    DEFAULT = "default"


CACHE_TTL_SECONDS: dict[EndpointFamily, int] = {
    EndpointFamily.PREVIOUS_CLOSE: 3600,
    EndpointFamily.TICKER_SEARCH: 86400,
    EndpointFamily.GROUPED_DAILY: 21600,
    EndpointFamily.NEWS: 1800,
    EndpointFamily.DEFAULT: 300,
}


def classify_endpoint(endpoint_path: str) -> EndpointFamily:
    """
    Classify an endpoint path into its family.

    Checks run in a fixed order; the first match wins.

    Args:
        endpoint_path: Upstream route, with or without query string

    Returns:
        The EndpointFamily the path belongs to
    """
    if "/aggs/ticker/" in endpoint_path and "/prev" in endpoint_path:
        return EndpointFamily.PREVIOUS_CLOSE
    if "/reference/tickers" in endpoint_path:
        return EndpointFamily.TICKER_SEARCH
    if "/grouped/" in endpoint_path:
        return EndpointFamily.GROUPED_DAILY
    if "/news" in endpoint_path:
        return EndpointFamily.NEWS
    return EndpointFamily.DEFAULT


def cache_ttl_for_endpoint(endpoint_path: str) -> int:
    """Cache lifetime in seconds for a successful response from endpoint_path."""
    return CACHE_TTL_SECONDS[classify_endpoint(endpoint_path)]


def normalize_endpoint(endpoint_path: str) -> str:
    """Collapse every non-alphanumeric character of the path to an underscore."""
    return _NON_ALPHANUMERIC.sub("_", endpoint_path)


__all__ = [
    "CACHE_TTL_SECONDS",
    "EndpointFamily",
    "cache_ttl_for_endpoint",
    "classify_endpoint",
    "normalize_endpoint",
]
