# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Tests for lazy import patterns in __init__.py modules.

These tests cover the __getattr__ lazy import mechanisms used for the
optional Redis dependency.
"""

import pytest


class TestTopLevelLazyImports:
    """Test lazy imports from the top-level market_gateway module."""

    def test_lazy_redis_backend_import(self):
        from market_gateway import RedisBackend
        from market_gateway.backends.redis import RedisBackend as Direct

        assert RedisBackend is Direct

    def test_unknown_attribute_raises_attribute_error(self):
        import market_gateway

        with pytest.raises(AttributeError, match=r"has no attribute"):
            _ = market_gateway.NonExistentAttribute

    def test_unknown_attribute_error_message_format(self):
        import market_gateway

        with pytest.raises(
            AttributeError,
            match=r"module 'market_gateway' has no attribute 'FakeClass'",
        ):
            _ = market_gateway.FakeClass

    def test_public_exports(self):
        import market_gateway

        for name in market_gateway.__all__:
            assert getattr(market_gateway, name) is not None


class TestBackendsLazyImports:
    """Test lazy imports from the market_gateway.backends module."""

    def test_lazy_redis_backend_import(self):
        from market_gateway.backends import RedisBackend

        assert RedisBackend.__name__ == "RedisBackend"

    def test_unknown_attribute_raises_attribute_error(self):
        import market_gateway.backends

        with pytest.raises(
            AttributeError,
            match=r"module 'market_gateway.backends' has no attribute 'Nope'",
        ):
            _ = market_gateway.backends.Nope
