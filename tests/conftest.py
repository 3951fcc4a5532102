"""Global pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import pytest

from leasekeeper.config import ElectionConfig
from leasekeeper.distributed.memory_lock import InMemoryLeaseStore

WaitUntil = Callable[..., Awaitable[None]]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fast_config() -> ElectionConfig:
    """Election timings short enough for real-time tests."""
    return ElectionConfig(
        lease_duration=0.6,
        renew_deadline=0.3,
        retry_period=0.05,
        release_on_cancel=True,
    )


@pytest.fixture
def store() -> InMemoryLeaseStore:
    """Fresh shared in-memory lease store."""
    return InMemoryLeaseStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wait_until() -> WaitUntil:
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait(
        predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01
    ) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError(f"condition not met within {timeout}s")
            await asyncio.sleep(interval)

    return _wait
