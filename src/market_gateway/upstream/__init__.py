# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Upstream market-data HTTP client implementations."""

from .http import HttpxUpstreamClient

__all__ = ["HttpxUpstreamClient"]
