# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
GatewayService: the rate-limited, cache-backed market-data gateway.

Every upstream call goes through a single-flight priority queue drained under
a per-window budget. Responses are cached with endpoint-specific TTLs, and a
429 from the upstream puts the request back with its priority raised by one.
"""

import asyncio
import logging
from typing import Any

from typing_extensions import Self

from ..backends.base import BaseBackend
from ..exceptions import (
    GatewayError,
    GatewayStoppedError,
    RequeueLimitExceededError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
)
from ..observability.metrics import GatewayMetrics
from ..protocols.upstream import UpstreamClient
from ..types.endpoint import classify_endpoint
from ..types.queue import QueueRecord
from ..upstream.http import HttpxUpstreamClient
from .cache import MISS, ResponseCache
from .config import GatewayConfig, RestorePolicy
from .queue import RequestQueue
from .rate_counter import RateCounter
from .tasks import DeferredCalls, PeriodicTask

logger = logging.getLogger(__name__)

COOLDOWN_DRAIN_KEY = "cooldown_drain"


def _endpoint_for_log(endpoint_path: str) -> str:
    return endpoint_path.split("?", 1)[0]


def _failure_reason(error: BaseException) -> str:
    if isinstance(error, UpstreamTimeoutError):
        return "timeout"
    if isinstance(error, RequeueLimitExceededError):
        return "rate_limit"
    if isinstance(error, UpstreamError):
        return "upstream_error"
    return "error"


class GatewayService:
    """
    Mediates every call to the upstream market-data provider.

    The service owns three pieces of state:

    - a RequestQueue of durable QueueRecords, snapshotted to the store;
    - a continuation table mapping request_id to the asyncio.Future a
      caller is awaiting (never persisted);
    - a single-flight flag so at most one drain, and therefore at most one
      upstream call, runs at a time.

    Lifecycle is explicit: start() restores the queue snapshot and starts the
    periodic drain, stop() cancels timers and fails callers still waiting.

    Example:
        >>> backend = RedisBackend()
        >>> async with GatewayService(backend, config=GatewayConfig.from_env()) as gateway:
        ...     body = await gateway.fetch("/v2/aggs/ticker/AAPL/prev", priority=5)
    """

    def __init__(
        self,
        backend: BaseBackend,
        upstream: UpstreamClient | None = None,
        config: GatewayConfig | None = None,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            backend: Key/value store for the cache, counter, and queue snapshot
            upstream: Upstream client. Defaults to an HttpxUpstreamClient built
                from config, which the service then closes on stop().
            config: Gateway configuration (defaults to GatewayConfig())
            metrics: Optional metrics sink; created when config.metrics_enabled
        """
        self.config = config or GatewayConfig()
        self.backend = backend

        self._owns_upstream = upstream is None
        self.upstream: UpstreamClient = upstream or HttpxUpstreamClient(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            user_agent=self.config.user_agent,
        )

        self.queue = RequestQueue(
            backend, self.config.queue_key, snapshot_ttl=self.config.queue_snapshot_ttl
        )
        self.rate_counter = RateCounter(
            backend,
            key=self.config.counter_key,
            limit=self.config.max_requests_per_window,
            window_seconds=self.config.window_seconds,
        )
        self.cache = ResponseCache(backend, prefix=self.config.cache_prefix)

        if metrics is None and self.config.metrics_enabled:
            metrics = GatewayMetrics()
        self.metrics = metrics

        self._continuations: dict[str, asyncio.Future[Any]] = {}
        self._is_draining = False
        self._running = False
        self._drain_tasks: set[asyncio.Task[None]] = set()
        self._shutdown_lock = asyncio.Lock()

        self._periodic_drain = PeriodicTask(
            self.process_queue, self.config.drain_interval, name="gateway_periodic_drain"
        )
        self._deferred = DeferredCalls()

        logger.info(
            f"Initialized {self.__class__.__name__} with budget "
            f"{self.config.max_requests_per_window}/{self.config.window_seconds}s"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._running

    @property
    def is_draining(self) -> bool:
        return self._is_draining

    @property
    def pending_callers(self) -> int:
        """Number of callers still awaiting a queued request."""
        return sum(1 for f in self._continuations.values() if not f.done())

    async def start(self) -> None:
        """Initialize the counter, restore queued work, and start the periodic drain."""
        if self._running:
            return

        self._running = True
        await self.rate_counter.initialize()

        restored = await self.queue.restore()
        if restored:
            await self._apply_restore_policy(restored)
        self._update_queue_depth()

        self._periodic_drain.start()
        self._kick_drain()

        logger.info(f"{self.__class__.__name__} started")

    async def _apply_restore_policy(self, restored: list[QueueRecord]) -> None:
        if self.config.restore_policy is RestorePolicy.DROP:
            logger.warning(
                f"Dropping {len(restored)} restored requests with no waiting caller"
            )
            await self.queue.clear()
        else:
            logger.info(
                f"Servicing {len(restored)} restored requests to warm the cache"
            )

    async def stop(self) -> None:
        """
        Stop background work and fail callers still waiting.

        Queued records stay in the persisted snapshot for the next start().
        """
        async with self._shutdown_lock:
            if not self._running:
                return

            self._running = False

            await self._periodic_drain.stop()
            await self._deferred.stop()

            for task in list(self._drain_tasks):
                if not task.done():
                    task.cancel()
            if self._drain_tasks:
                await asyncio.gather(*self._drain_tasks, return_exceptions=True)
            self._drain_tasks.clear()

            await self.queue.persist()

            for request_id, future in list(self._continuations.items()):
                if not future.done():
                    future.set_exception(
                        GatewayStoppedError(
                            f"Gateway stopped before request {request_id} was serviced"
                        )
                    )
            self._continuations.clear()

            if self._owns_upstream:
                await self.upstream.close()

            logger.info(f"{self.__class__.__name__} stopped successfully")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        endpoint_path: str,
        request_options: dict[str, Any] | None = None,
        priority: int = 1,
    ) -> Any:
        """
        Return the upstream response for endpoint_path.

        A live cache entry is returned immediately, without touching the
        queue or the rate counter. Otherwise the request is queued and this
        coroutine waits until a drain services it, which may take minutes
        when the budget is exhausted.

        Args:
            endpoint_path: Route with query string, API key excluded
            request_options: Optional {"headers": {...}, "params": {...}}
            priority: Higher is serviced first

        Returns:
            The decoded JSON body

        Raises:
            UpstreamError: The upstream rejected the request (not 429)
            RequeueLimitExceededError: Too many 429s, when a cap is configured
            GatewayStoppedError: The gateway stopped while the request was queued
            GatewayError: The gateway is not running
            ValueError: request_options cannot be serialized to JSON
        """
        if not self._running:
            raise GatewayError("Gateway is not running")

        family = classify_endpoint(endpoint_path).value
        cache_key = self.cache.key_for_endpoint(endpoint_path)

        cached = await self.cache.get_json(cache_key)
        if cached is not MISS:
            logger.debug(f"Cache hit for: {endpoint_path}")
            self._record("cache_hit", family)
            return cached

        self._record("cache_miss", family)
        future = await self.submit(endpoint_path, request_options, priority)
        return await future

    async def submit(
        self,
        endpoint_path: str,
        request_options: dict[str, Any] | None = None,
        priority: int = 1,
    ) -> "asyncio.Future[Any]":
        """
        Queue a request without consulting the cache.

        Returns:
            Future resolved with the body once the request is serviced

        Raises:
            GatewayError: The gateway is not running
            ValueError: request_options cannot be serialized to JSON; nothing
                is queued in that case
        """
        if not self._running:
            raise GatewayError("Gateway is not running")

        record = QueueRecord(
            endpoint_path=endpoint_path,
            request_options=request_options,
            priority=priority,
        )
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._continuations[record.request_id] = future
        await self.queue.enqueue(record)
        self._update_queue_depth()

        logger.debug(
            f"Queued {_endpoint_for_log(endpoint_path)} with priority {priority} "
            f"({len(self.queue)} pending)"
        )

        if not self._is_draining:
            self._kick_drain()
        return future

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def _kick_drain(self) -> None:
        task = asyncio.create_task(self.process_queue(), name="gateway_drain")
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def process_queue(self) -> None:
        """
        Service at most one queued request under the rate budget.

        Single-flight: returns immediately if a drain is already running or
        the queue is empty. When work remains afterwards, one follow-up
        drain is scheduled after the cooldown instead of recursing.
        """
        if self._is_draining or not self.queue:
            return

        self._is_draining = True
        try:
            if not await self.rate_counter.has_budget():
                self._record("budget_deferral")
                return

            record = await self.queue.dequeue_highest()
            if record is None:
                return

            try:
                await self._service(record)
            except asyncio.CancelledError:
                # Interrupted by stop(); keep the work for the next start
                self.queue.reinsert(record)
                raise
        finally:
            self._is_draining = False
            self._update_queue_depth()
            if self.queue and self._running:
                self._deferred.schedule(
                    COOLDOWN_DRAIN_KEY, self.config.cooldown_seconds, self.process_queue
                )

    async def _service(self, record: QueueRecord) -> None:
        endpoint = _endpoint_for_log(record.endpoint_path)
        family = classify_endpoint(record.endpoint_path).value

        await self.rate_counter.increment()
        self._record("upstream_call", family)

        try:
            body = await self.upstream.get(record.endpoint_path, record.request_options)
        except UpstreamRateLimitError as e:
            await self._handle_rate_limited(record, e)
            return
        except Exception as e:
            logger.error(f"API request failed: {endpoint}: {e}")
            self._reject(record, e)
            self._record("failure", family, _failure_reason(e))
            return

        ttl = self.cache.ttl_for_endpoint(record.endpoint_path)
        if ttl > 0 and body is not None:
            cache_key = self.cache.key_for_endpoint(record.endpoint_path)
            if await self.cache.set_json(cache_key, body, ttl):
                logger.info(f"Cached response for {endpoint} ({ttl}s)")

        self._resolve(record, body)
        self._record("completion", family)

    async def _handle_rate_limited(
        self, record: QueueRecord, error: UpstreamRateLimitError
    ) -> None:
        endpoint = _endpoint_for_log(record.endpoint_path)
        family = classify_endpoint(record.endpoint_path).value
        max_requeues = self.config.max_requeues

        if max_requeues is not None and record.attempts >= max_requeues:
            logger.error(
                f"Giving up on {endpoint} after {record.attempts + 1} rate-limit rejections"
            )
            limit_error = RequeueLimitExceededError(
                f"Request to {endpoint} was rate limited {record.attempts + 1} times",
                request_id=record.request_id,
                attempts=record.attempts + 1,
            )
            limit_error.__cause__ = error
            self._reject(record, limit_error)
            self._record("failure", family, "rate_limit")
            return

        bumped = await self.queue.requeue(record)
        self._record("requeue", family)
        logger.warning(
            f"Rate limit hit, pushed request back to queue: {endpoint} "
            f"(priority {bumped.priority})"
        )

    # ------------------------------------------------------------------
    # Continuations
    # ------------------------------------------------------------------

    def _resolve(self, record: QueueRecord, body: Any) -> bool:
        """Fulfil the waiting caller, if any. Returns True if a caller was resolved."""
        future = self._continuations.pop(record.request_id, None)
        if future is None or future.done():
            logger.debug(
                f"No waiting caller for {_endpoint_for_log(record.endpoint_path)} "
                f"(request {record.request_id}); response cached only"
            )
            return False
        future.set_result(body)
        return True

    def _reject(self, record: QueueRecord, error: BaseException) -> bool:
        """Fail the waiting caller, if any. Returns True if a caller was rejected."""
        future = self._continuations.pop(record.request_id, None)
        if future is None or future.done():
            logger.debug(
                f"No waiting caller to reject for request {record.request_id}: {error}"
            )
            return False
        future.set_exception(error)
        return True

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _record(self, event: str, *args: str) -> None:
        if self.metrics is not None:
            getattr(self.metrics, f"record_{event}")(*args)

    def _update_queue_depth(self) -> None:
        if self.metrics is not None:
            self.metrics.set_queue_depth(len(self.queue))

    def get_stats(self) -> dict[str, Any]:
        """Current gateway state, merged with metrics when enabled."""
        stats: dict[str, Any] = {
            "running": self._running,
            "draining": self._is_draining,
            "queue_length": len(self.queue),
            "pending_callers": self.pending_callers,
            "cooldown_scheduled": self._deferred.is_pending(COOLDOWN_DRAIN_KEY),
        }
        if self.metrics is not None:
            stats.update(self.metrics.get_stats())
        return stats


__all__ = ["GatewayService"]
