# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduled background work for the gateway.

Both helpers own their asyncio tasks and cancel them on stop(), so a
stopped gateway leaves nothing running on the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run an async callback every `interval` seconds until stopped.

    Exceptions raised by the callback are logged and the loop continues.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval: float,
        name: str = "periodic_task",
    ):
        self._callback = callback
        self.interval = interval
        self.name = name
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. A second call is a no-op."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self._callback()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)


class DeferredCalls:
    """
    One-shot delayed callbacks, deduplicated by key.

    While a call for a key is pending, scheduling the same key again is a
    no-op. Tracks its tasks so stop() can cancel whatever is still waiting.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self._pending_keys: set[str] = set()

    @property
    def pending_keys(self) -> set[str]:
        return set(self._pending_keys)

    def is_pending(self, key: str) -> bool:
        return key in self._pending_keys

    def schedule(
        self,
        key: str,
        delay: float,
        callback: Callable[[], Awaitable[object]],
    ) -> bool:
        """
        Run callback after delay seconds.

        Returns:
            True if a new call was scheduled, False if one was already pending
        """
        if key in self._pending_keys:
            return False

        async def deferred() -> None:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self._pending_keys.discard(key)
                logger.debug(f"Deferred call '{key}' cancelled")
                return

            # Cleared before running so the callback may reschedule the key
            self._pending_keys.discard(key)
            try:
                await callback()
            except asyncio.CancelledError:
                logger.debug(f"Deferred call '{key}' cancelled while running")
            except Exception as e:
                logger.error(f"Deferred call '{key}' failed: {e}", exc_info=True)

        self._pending_keys.add(key)
        task = asyncio.create_task(deferred(), name=f"deferred:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug(f"Scheduled deferred call '{key}' in {delay:.2f}s")
        return True

    async def stop(self) -> None:
        """Cancel every pending call and wait for cancellation."""
        for task in list(self._tasks):
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        self._pending_keys.clear()


__all__ = ["DeferredCalls", "PeriodicTask"]
