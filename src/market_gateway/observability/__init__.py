# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability for the market-data gateway.

- GatewayMetrics: in-process counters mirrored to a prometheus_client registry
- constants: Prometheus metric names
"""

from .metrics import GatewayMetrics

__all__ = ["GatewayMetrics"]
