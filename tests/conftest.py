"""Shared fixtures for governor tests."""

import asyncio
import random

import pytest

from governor.core.clock import Clock
from governor.services.governor import reset_governor

START_TIME = 1_700_000_000.0


class FakeClock(Clock):
    """Virtual clock: sleeping and waiting jump time forward instead of blocking.

    Before jumping, waiters yield to the event loop a few times so that
    tasks which are ready to run get the chance to finish first. Concurrent
    sleepers move time to the latest of their deadlines, not the sum.
    """

    YIELDS = 50

    def __init__(self, start: float = START_TIME):
        self._now = start
        self.sleeps = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def _settle(self) -> None:
        for _ in range(self.YIELDS):
            await asyncio.sleep(0)

    async def sleep(self, seconds: float) -> None:
        deadline = self._now + max(0.0, seconds)
        self.sleeps.append(seconds)
        await self._settle()
        self._now = max(self._now, deadline)

    async def wait(self, event: asyncio.Event, timeout: float) -> bool:
        if event.is_set():
            return True
        deadline = self._now + max(0.0, timeout)
        await self._settle()
        if event.is_set():
            return True
        self._now = max(self._now, deadline)
        return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the global governor before and after each test."""
    reset_governor()
    yield
    reset_governor()


@pytest.fixture
def make_clock():
    """Factory for tests that need several independent clocks."""
    return FakeClock
