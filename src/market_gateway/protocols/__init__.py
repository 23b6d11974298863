# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definitions for pluggable gateway components.

Available protocols:
- UpstreamClient: Interface for the HTTP client that calls the market-data provider
"""

from .upstream import UpstreamClient

__all__ = [
    "UpstreamClient",
]
