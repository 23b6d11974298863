import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from market_gateway.exceptions import (
    BackendConnectionError,
    GatewayError,
    GatewayStoppedError,
    RequeueLimitExceededError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
)
from market_gateway.gateway.config import GatewayConfig, RestorePolicy
from market_gateway.gateway.service import GatewayService
from market_gateway.types.queue import QueueRecord, QueueSnapshot
from market_gateway.upstream.http import HttpxUpstreamClient

PREV_AAPL = "/v2/aggs/ticker/AAPL/prev"


async def exhaust_budget(service):
    await service.backend.set(
        service.config.counter_key,
        str(service.config.max_requests_per_window),
        ttl=service.config.window_seconds,
    )


class TestFetch:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_queue_and_counter(self, service, backend, upstream):
        await backend.set(
            service.cache.key_for_endpoint(PREV_AAPL), json.dumps({"cached": True}), ttl=60
        )
        before = await service.rate_counter.current()

        result = await service.fetch(PREV_AAPL, priority=5)

        assert result == {"cached": True}
        assert len(service.queue) == 0
        assert upstream.calls == []
        assert await service.rate_counter.current() == before

    @pytest.mark.asyncio
    async def test_cache_miss_calls_upstream_and_caches(self, service, backend, upstream):
        body = {"results": [{"T": "AAPL", "c": 190.5}]}
        upstream.script(PREV_AAPL, body)

        result = await service.fetch(PREV_AAPL, priority=5)

        key = service.cache.key_for_endpoint(PREV_AAPL)
        assert result == body
        assert upstream.calls == [PREV_AAPL]
        assert json.loads(await backend.get(key)) == body
        assert await backend.ttl(key) == 3600
        assert await service.rate_counter.current() == 1

    @pytest.mark.parametrize(
        "path,ttl",
        [
            ("/v2/aggs/ticker/MSFT/prev", 3600),
            ("/v3/reference/tickers?search=apple&active=true", 86400),
            ("/v2/aggs/grouped/locale/us/market/stocks/2024-01-05", 21600),
            ("/v2/reference/news?ticker=AAPL", 1800),
            ("/v1/marketstatus/now", 300),
        ],
    )
    @pytest.mark.asyncio
    async def test_stored_ttl_matches_endpoint_family(self, service, backend, path, ttl):
        await service.fetch(path)
        assert await backend.ttl(service.cache.key_for_endpoint(path)) == ttl

    @pytest.mark.asyncio
    async def test_request_options_forwarded(self, service, upstream):
        options = {"headers": {"Accept": "application/json"}}
        await service.fetch("/v1/marketstatus/now", request_options=options)
        assert upstream.options == [options]

    @pytest.mark.asyncio
    async def test_unserializable_options_rejected_before_queueing(
        self, service, upstream
    ):
        with pytest.raises(ValueError, match="JSON-serializable"):
            await service.fetch("/v1/odd", request_options={"obj": object()})

        assert len(service.queue) == 0
        assert service.pending_callers == 0
        assert upstream.calls == []

        # Later callers are unaffected
        assert await service.fetch("/v1/normal") == {"status": "OK", "path": "/v1/normal"}

    @pytest.mark.asyncio
    async def test_none_body_is_not_cached(self, service, backend, upstream):
        upstream.script("/v1/empty", None)

        assert await service.fetch("/v1/empty") is None
        assert await backend.get(service.cache.key_for_endpoint("/v1/empty")) is None

    @pytest.mark.asyncio
    async def test_fetch_when_not_running_raises(self, backend, upstream, config):
        svc = GatewayService(backend, upstream=upstream, config=config)
        with pytest.raises(GatewayError, match="not running"):
            await svc.fetch(PREV_AAPL)

    @pytest.mark.asyncio
    async def test_store_outage_degrades_to_upstream(self, service, backend, upstream):
        """A failing store must not surface to the caller."""
        with patch.object(
            backend, "get", AsyncMock(side_effect=BackendConnectionError("down"))
        ):
            result = await service.fetch("/v1/marketstatus/now")

        assert result == {"status": "OK", "path": "/v1/marketstatus/now"}
        assert upstream.calls == ["/v1/marketstatus/now"]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_priority_order(self, service, upstream, settle):
        await exhaust_budget(service)
        tasks = [
            asyncio.create_task(service.fetch(path, priority=priority))
            for path, priority in [("/v1/a", 1), ("/v1/b", 5), ("/v1/c", 3)]
        ]
        await settle()

        assert upstream.calls == []
        assert [r.priority for r in service.queue.records()] == [5, 3, 1]

        await service.rate_counter.reset()
        for _ in range(3):
            await service.process_queue()

        assert upstream.calls == ["/v1/b", "/v1/c", "/v1/a"]
        results = await asyncio.gather(*tasks)
        assert [r["path"] for r in results] == ["/v1/a", "/v1/b", "/v1/c"]

    @pytest.mark.asyncio
    async def test_equal_priority_keeps_arrival_order(self, service, upstream, settle):
        await exhaust_budget(service)
        tasks = [
            asyncio.create_task(service.fetch(path, priority=2))
            for path in ["/v1/x", "/v1/y", "/v1/z"]
        ]
        await settle()

        await service.rate_counter.reset()
        for _ in range(3):
            await service.process_queue()

        assert upstream.calls == ["/v1/x", "/v1/y", "/v1/z"]
        await asyncio.gather(*tasks)


class TestRateBudget:
    @pytest.mark.asyncio
    async def test_sixth_request_waits_for_window_reset(
        self, service, upstream, clock, settle
    ):
        paths = [f"/v1/item/{i}" for i in range(6)]
        tasks = [asyncio.create_task(service.fetch(p)) for p in paths]
        await settle()

        assert len(upstream.calls) == 5
        assert [r.endpoint_path for r in service.queue.records()] == ["/v1/item/5"]
        assert sum(t.done() for t in tasks) == 5
        assert service.metrics.budget_deferrals >= 1

        # Still inside the window: nothing moves
        await service.process_queue()
        assert len(upstream.calls) == 5

        clock.advance(61)
        await service.process_queue()

        assert upstream.calls[-1] == "/v1/item/5"
        results = await asyncio.gather(*tasks)
        assert len(results) == 6

    @pytest.mark.asyncio
    async def test_counter_incremented_per_upstream_call(self, service, backend):
        await service.fetch("/v1/one")
        await service.fetch("/v1/two")

        assert await service.rate_counter.current() == 2
        assert await backend.ttl(service.config.counter_key) == 60


class TestRateLimitRequeue:
    @pytest.mark.asyncio
    async def test_429_requeues_with_priority_plus_one(self, service, upstream, settle):
        body = {"results": [{"c": 1.0}]}
        upstream.script(PREV_AAPL, UpstreamRateLimitError(endpoint=PREV_AAPL), body)

        task = asyncio.create_task(service.fetch(PREV_AAPL, priority=5))
        await settle()

        assert upstream.calls == [PREV_AAPL]
        assert not task.done()
        [record] = service.queue.records()
        assert record.priority == 6
        assert record.attempts == 1
        assert service.pending_callers == 1
        assert service.metrics.requeues == 1

        await service.process_queue()

        assert await task == body
        assert service.pending_callers == 0

    @pytest.mark.asyncio
    async def test_requeued_record_keeps_place_among_equal_priority(
        self, service, upstream, settle
    ):
        upstream.script("/v1/first", UpstreamRateLimitError())
        await exhaust_budget(service)
        tasks = [
            asyncio.create_task(service.fetch("/v1/first", priority=1)),
            asyncio.create_task(service.fetch("/v1/second", priority=2)),
        ]
        await settle()
        await service.rate_counter.reset()

        # /v1/second goes first; /v1/first bounces to priority 2 and stays
        # ahead of later priority-2 arrivals because of its sequence
        await service.process_queue()
        await service.process_queue()
        await exhaust_budget(service)
        later = asyncio.create_task(service.fetch("/v1/later", priority=2))
        await settle()
        await service.rate_counter.reset()

        assert [r.endpoint_path for r in service.queue.records()][0] == "/v1/first"
        await service.process_queue()
        await service.process_queue()

        assert upstream.calls == ["/v1/second", "/v1/first", "/v1/first", "/v1/later"]
        await asyncio.gather(*tasks, later)

    @pytest.mark.asyncio
    async def test_requeue_cap_rejects(self, backend, upstream, settle):
        config = GatewayConfig(
            api_key="k", max_requeues=1, drain_interval=3600.0, cooldown_seconds=3600.0
        )
        upstream.script(PREV_AAPL, UpstreamRateLimitError(), UpstreamRateLimitError())

        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            task = asyncio.create_task(svc.fetch(PREV_AAPL))
            await settle()
            assert not task.done()

            await svc.process_queue()

            with pytest.raises(RequeueLimitExceededError) as exc_info:
                await task
            assert exc_info.value.attempts == 2
            assert len(svc.queue) == 0
            assert svc.metrics.failures_by_reason["rate_limit"] == 1


class TestUpstreamFailures:
    @pytest.mark.asyncio
    async def test_terminal_error_rejects_caller(self, service, upstream):
        upstream.script("/v1/broken", UpstreamError("boom", status_code=500))

        with pytest.raises(UpstreamError) as exc_info:
            await service.fetch("/v1/broken")

        assert exc_info.value.status_code == 500
        assert len(service.queue) == 0
        assert service.metrics.failures_by_reason["upstream_error"] == 1

    @pytest.mark.asyncio
    async def test_timeout_rejects_caller(self, service, upstream):
        upstream.script("/v1/slow", UpstreamTimeoutError("timed out", endpoint="/v1/slow"))

        with pytest.raises(UpstreamTimeoutError):
            await service.fetch("/v1/slow")
        assert service.metrics.failures_by_reason["timeout"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_reaches_caller(self, service, upstream):
        upstream.script("/v1/bug", RuntimeError("unexpected"))

        with pytest.raises(RuntimeError, match="unexpected"):
            await service.fetch("/v1/bug")

    @pytest.mark.asyncio
    async def test_failure_does_not_wedge_queue(self, service, upstream):
        upstream.script("/v1/broken", UpstreamError("boom", status_code=404))

        with pytest.raises(UpstreamError):
            await service.fetch("/v1/broken")

        assert (await service.fetch("/v1/fine"))["path"] == "/v1/fine"


class TestDrain:
    @pytest.mark.asyncio
    async def test_single_flight(self, service, upstream):
        await service.queue.enqueue(QueueRecord(endpoint_path="/v1/x"))
        service._is_draining = True

        await service.process_queue()
        assert upstream.calls == []

        service._is_draining = False
        await service.process_queue()
        assert upstream.calls == ["/v1/x"]

    @pytest.mark.asyncio
    async def test_empty_queue_is_noop(self, service, upstream):
        await service.process_queue()
        assert upstream.calls == []
        assert service.get_stats()["cooldown_scheduled"] is False

    @pytest.mark.asyncio
    async def test_cooldown_scheduled_when_work_remains(self, service, settle):
        await exhaust_budget(service)
        task = asyncio.create_task(service.fetch("/v1/x"))
        await settle()

        assert service.get_stats()["cooldown_scheduled"] is True
        assert not task.done()
        task.cancel()

    @pytest.mark.asyncio
    async def test_cooldown_drain_services_queue(self, backend, upstream, settle):
        config = GatewayConfig(api_key="k", drain_interval=3600.0, cooldown_seconds=0.01)
        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await exhaust_budget(svc)
            task = asyncio.create_task(svc.fetch("/v1/x"))
            await settle()
            assert upstream.calls == []

            await svc.rate_counter.reset()
            result = await asyncio.wait_for(task, timeout=2.0)

        assert result["path"] == "/v1/x"

    @pytest.mark.asyncio
    async def test_periodic_drain_services_queue(self, backend, upstream):
        config = GatewayConfig(api_key="k", drain_interval=0.01, cooldown_seconds=3600.0)
        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await svc.queue.enqueue(QueueRecord(endpoint_path="/v1/background"))
            for _ in range(100):
                if upstream.calls:
                    break
                await asyncio.sleep(0.01)

        assert upstream.calls == ["/v1/background"]


class TestRestore:
    @pytest.mark.asyncio
    async def test_restored_records_are_serviced_without_callers(
        self, backend, upstream, config, settle
    ):
        path = "/v2/aggs/ticker/MSFT/prev"
        body = {"results": [{"T": "MSFT", "c": 410.0}]}
        upstream.script(path, body)
        snapshot = QueueSnapshot(
            entries=[QueueRecord(endpoint_path=path, priority=5, sequence=7)]
        )
        await backend.set(config.queue_key, snapshot.model_dump_json(), ttl=3600)

        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await settle()

            assert upstream.calls == [path]
            assert len(svc.queue) == 0
            assert svc.pending_callers == 0
            cached = await svc.cache.get_json(svc.cache.key_for_endpoint(path))
            assert cached == body

    @pytest.mark.asyncio
    async def test_drop_policy_discards_restored_records(self, backend, upstream, settle):
        config = GatewayConfig(
            api_key="k",
            restore_policy=RestorePolicy.DROP,
            drain_interval=3600.0,
            cooldown_seconds=3600.0,
        )
        snapshot = QueueSnapshot(entries=[QueueRecord(endpoint_path="/v1/stale")])
        await backend.set(config.queue_key, snapshot.model_dump_json(), ttl=3600)

        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await settle()
            assert len(svc.queue) == 0

        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_starts_empty(self, backend, upstream, config, settle):
        await backend.set(config.queue_key, "{not json", ttl=3600)

        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await settle()
            assert len(svc.queue) == 0
            assert await backend.exists(config.queue_key) is False

        assert upstream.calls == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_initializes_counter(self, service, backend, config):
        assert await backend.get(config.counter_key) == "0"
        assert await backend.ttl(config.counter_key) == 60
        assert service.is_running()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, service):
        await service.start()
        assert service.is_running()

    @pytest.mark.asyncio
    async def test_stop_rejects_pending_callers_and_persists(
        self, service, backend, config, settle
    ):
        await exhaust_budget(service)
        task = asyncio.create_task(service.fetch("/v1/pending"))
        await settle()

        await service.stop()

        with pytest.raises(GatewayStoppedError):
            await task
        assert not service.is_running()
        snapshot = QueueSnapshot.model_validate_json(await backend.get(config.queue_key))
        assert [r.endpoint_path for r in snapshot.entries] == ["/v1/pending"]

    @pytest.mark.asyncio
    async def test_stop_does_not_close_injected_upstream(self, service, upstream):
        await service.stop()
        assert upstream.closed is False

    @pytest.mark.asyncio
    async def test_stop_closes_owned_upstream(self, backend, config):
        svc = GatewayService(backend, config=config)
        assert isinstance(svc.upstream, HttpxUpstreamClient)

        await svc.start()
        await svc.stop()

        assert svc.upstream._client.is_closed

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, backend, upstream):
        config = GatewayConfig(
            api_key="k",
            metrics_enabled=False,
            drain_interval=3600.0,
            cooldown_seconds=3600.0,
        )
        async with GatewayService(backend, upstream=upstream, config=config) as svc:
            await svc.fetch("/v1/x")
            stats = svc.get_stats()

        assert svc.metrics is None
        assert "cache_hits" not in stats
        assert stats["queue_length"] == 0

    @pytest.mark.asyncio
    async def test_get_stats_includes_metrics(self, service, backend):
        await service.fetch("/v1/x")
        await service.fetch("/v1/x")

        stats = service.get_stats()
        assert stats["running"] is True
        assert stats["cache_misses"] == 1
        assert stats["cache_hits"] == 1
        assert stats["upstream_calls"] == 1
        assert stats["requests_completed"] == 1
