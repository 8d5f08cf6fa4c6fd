"""Tests for the three-dimension sliding rate window (simulated time)."""

from __future__ import annotations

import asyncio

import pytest

from chatgate.configs.system import ProviderLimitsConfig
from chatgate.infra.concurrency.rate_window import RateWindow


def _window(clock, *, rpm=0, itpm=0, otpm=0) -> RateWindow:
    return RateWindow(
        requests_per_minute=rpm,
        input_tokens_per_minute=itpm,
        output_tokens_per_minute=otpm,
        clock=clock,
        sleep=clock.sleep,
    )


# =========================================================================
# Request dimension
# =========================================================================


class TestRequestCap:
    @pytest.mark.asyncio
    async def test_within_cap_is_immediate(self, clock):
        window = _window(clock, rpm=3)
        for _ in range(3):
            await window.reserve()
        assert clock.sleeps == []
        assert window.usage().requests == 3

    @pytest.mark.asyncio
    async def test_next_reservation_waits_for_oldest_to_age_out(self, clock):
        window = _window(clock, rpm=3)
        start = clock()
        await window.reserve()
        clock.advance(10)
        await window.reserve()
        clock.advance(10)
        await window.reserve()

        await window.reserve()

        assert clock.sleeps == [pytest.approx(40.001)]
        assert clock() == pytest.approx(start + 60.001)
        assert window.usage().requests == 3

    @pytest.mark.asyncio
    async def test_zero_cap_disables_dimension(self, clock):
        window = _window(clock, rpm=0)
        for _ in range(100):
            await window.reserve()
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waiters_served_in_arrival_order(self, clock):
        window = _window(clock, rpm=1)
        await window.reserve()
        order: list[str] = []

        async def reserve(name: str) -> None:
            await window.reserve()
            order.append(name)

        await asyncio.gather(reserve("first"), reserve("second"))
        assert order == ["first", "second"]
        assert len(clock.sleeps) == 2


# =========================================================================
# Token dimensions
# =========================================================================


class TestTokenCaps:
    @pytest.mark.asyncio
    async def test_input_tokens_wait(self, clock):
        window = _window(clock, itpm=100)
        await window.reserve(60, 0)
        await window.reserve(60, 0)
        assert clock.sleeps == [pytest.approx(60.001)]

    @pytest.mark.asyncio
    async def test_waits_for_enough_entries_to_free(self, clock):
        window = _window(clock, itpm=100)
        await window.reserve(50, 0)
        clock.advance(10)
        await window.reserve(50, 0)

        # 60 fits only once *both* earlier entries are gone.
        await window.reserve(60, 0)
        assert clock.sleeps == [pytest.approx(60.001)]

    @pytest.mark.asyncio
    async def test_takes_max_wait_over_dimensions(self, clock):
        window = _window(clock, rpm=10, itpm=1_000, otpm=100)
        await window.reserve(10, 90)
        clock.advance(30)
        await window.reserve(10, 5)

        await window.reserve(10, 50)
        # Output tokens need the first entry gone: 60 - 30 seconds.
        assert clock.sleeps == [pytest.approx(30.001)]

    @pytest.mark.asyncio
    async def test_oversized_reservation_admitted_on_empty_window(self, clock):
        window = _window(clock, itpm=100)
        await window.reserve(150, 0)
        assert clock.sleeps == []

        await window.reserve(10, 0)
        assert clock.sleeps == [pytest.approx(60.001)]

    @pytest.mark.asyncio
    async def test_oversized_reservation_waits_for_drain(self, clock):
        window = _window(clock, itpm=100)
        await window.reserve(10, 0)
        clock.advance(20)
        await window.reserve(10, 0)

        await window.reserve(150, 0)
        assert clock.sleeps == [pytest.approx(60.001)]
        assert window.usage().input_tokens == 150


# =========================================================================
# Permit correction
# =========================================================================


class TestPermit:
    @pytest.mark.asyncio
    async def test_complete_corrects_to_actuals(self, clock):
        window = _window(clock, itpm=100)
        permit = await window.reserve(80, 40)
        permit.complete(10, 5)
        assert window.usage().input_tokens == 10
        assert window.usage().output_tokens == 5

        await window.reserve(80, 0)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_missing_actual_keeps_estimate(self, clock):
        window = _window(clock)
        permit = await window.reserve(80, 40)
        permit.complete(actual_output_tokens=7)
        assert (permit.input_tokens, permit.output_tokens) == (80, 7)

    @pytest.mark.asyncio
    async def test_second_complete_ignored(self, clock):
        window = _window(clock)
        permit = await window.reserve(80, 40)
        permit.complete(1, 1)
        permit.complete(500, 500)
        assert permit.completed is True
        assert (permit.input_tokens, permit.output_tokens) == (1, 1)


class TestFromConfig:
    def test_reads_caps(self, clock):
        window = RateWindow.from_config(
            ProviderLimitsConfig(requests_per_minute=7), clock=clock
        )
        assert window.usage().requests == 0
        assert window._requests_cap == 7
        assert window._input_cap == 50_000
        assert window._output_cap == 10_000
