"""Tests for the execution slot pool."""

from __future__ import annotations

import asyncio

import pytest

from chatgate.infra.concurrency import ExecutionSlots


class TestExecutionSlots:
    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ExecutionSlots(0)

    @pytest.mark.asyncio
    async def test_slot_context_tracks_usage(self):
        slots = ExecutionSlots(2)
        async with slots.slot():
            assert slots.in_use == 1
            async with slots.slot():
                assert slots.in_use == 2
        assert slots.in_use == 0
        assert slots.capacity == 2

    @pytest.mark.asyncio
    async def test_third_acquire_waits_for_release(self):
        slots = ExecutionSlots(2)
        await slots.acquire()
        await slots.acquire()

        waiter = asyncio.create_task(slots.acquire())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        slots.release()
        await asyncio.wait_for(waiter, timeout=1)
        assert slots.in_use == 2

    @pytest.mark.asyncio
    async def test_release_on_error(self):
        slots = ExecutionSlots(1)
        with pytest.raises(RuntimeError):
            async with slots.slot():
                raise RuntimeError("task failed")
        assert slots.in_use == 0
