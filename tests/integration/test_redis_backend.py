"""
RedisBackend integration tests against fakeredis.

Skipped when fakeredis is not installed.
"""

import json

import pytest

fakeredis = pytest.importorskip("fakeredis")

from market_gateway import GatewayConfig, GatewayService  # noqa: E402
from market_gateway.backends.redis import RedisBackend  # noqa: E402
from market_gateway.exceptions import BackendOperationError  # noqa: E402


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client=redis_client, namespace="it")


class TestRedisBackendIntegration:
    @pytest.mark.asyncio
    async def test_set_get_with_ttl(self, backend, redis_client):
        await backend.set("k", "v", ttl=60)

        assert await backend.get("k") == "v"
        assert await redis_client.get("it:k") == "v"
        assert 0 < await backend.ttl("k") <= 60

    @pytest.mark.asyncio
    async def test_incr_expire(self, backend):
        assert await backend.incr("counter") == 1
        assert await backend.incr("counter") == 2
        assert await backend.ttl("counter") == -1

        assert await backend.expire("counter", 60) is True
        assert 0 < await backend.ttl("counter") <= 60

    @pytest.mark.asyncio
    async def test_incr_non_integer(self, backend):
        await backend.set("k", "abc")
        with pytest.raises(BackendOperationError):
            await backend.incr("k")

    @pytest.mark.asyncio
    async def test_missing_key(self, backend):
        assert await backend.get("absent") is None
        assert await backend.exists("absent") is False
        assert await backend.delete("absent") is False
        assert await backend.ttl("absent") == -2

    @pytest.mark.asyncio
    async def test_health_check(self, backend):
        result = await backend.health_check()
        assert result.healthy is True


class TestGatewayOnRedis:
    @pytest.mark.asyncio
    async def test_fetch_caches_in_redis(self, backend, redis_client):
        class Upstream:
            def __init__(self):
                self.calls = []

            async def get(self, endpoint_path, request_options=None):
                self.calls.append(endpoint_path)
                return {"results": [{"c": 1.0}]}

            async def close(self):
                pass

        upstream = Upstream()
        config = GatewayConfig(api_key="k", drain_interval=3600.0, cooldown_seconds=3600.0)

        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            body = await svc.fetch("/v2/aggs/ticker/AAPL/prev", priority=5)

        assert body == {"results": [{"c": 1.0}]}
        cached = await redis_client.get("it:polygon:_v2_aggs_ticker_AAPL_prev")
        assert json.loads(cached) == body
        assert await redis_client.get("it:polygon_api_counter") == "1"
        snapshot = json.loads(await redis_client.get("it:polygon_api_queue"))
        assert snapshot["entries"] == []
