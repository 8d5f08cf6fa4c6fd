"""Shared fixtures: simulated time for the windowed components."""

from __future__ import annotations

import asyncio

import pytest


class FakeClock:
    """Monotonic clock the test moves by hand.

    ``sleep`` records the requested delay, jumps the clock forward by it
    and yields once to the event loop, so code that waits on the clock
    resumes immediately with time already advanced.
    """

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
