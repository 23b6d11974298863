"""
Shared fixtures for gateway unit tests.

FakeUpstream stands in for the HTTP client: it records every call and
replays scripted outcomes per endpoint path. FakeClock drives MemoryBackend
expiry without sleeping.
"""

import asyncio
from collections import defaultdict, deque
from typing import Any

import pytest

from market_gateway.backends.memory import MemoryBackend
from market_gateway.gateway.config import GatewayConfig
from market_gateway.gateway.service import GatewayService


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Scripted upstream client satisfying the UpstreamClient protocol."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.options: list[dict[str, Any] | None] = []
        self.closed = False
        self._scripts: dict[str, deque[Any]] = defaultdict(deque)

    def script(self, endpoint_path: str, *outcomes: Any) -> None:
        """Queue outcomes for endpoint_path; exceptions are raised, values returned."""
        self._scripts[endpoint_path].extend(outcomes)

    async def get(
        self, endpoint_path: str, request_options: dict[str, Any] | None = None
    ) -> Any:
        self.calls.append(endpoint_path)
        self.options.append(request_options)
        scripted = self._scripts.get(endpoint_path)
        if scripted:
            outcome = scripted.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {"status": "OK", "path": endpoint_path}

    async def close(self) -> None:
        self.closed = True


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Coroutine function that lets scheduled tasks run until the loop is idle."""
    return _settle


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return MemoryBackend(namespace="test", clock=clock)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def config():
    # Long timers so tests drive draining explicitly
    return GatewayConfig(
        api_key="test-key",
        drain_interval=3600.0,
        cooldown_seconds=3600.0,
    )


@pytest.fixture
async def service(backend, upstream, config):
    svc = GatewayService(backend, upstream=upstream, config=config)
    await svc.start()
    yield svc
    await svc.stop()
