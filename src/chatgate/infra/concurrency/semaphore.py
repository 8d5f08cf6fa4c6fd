"""ExecutionSlots: concurrency cap for provider calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from chatgate.infra.metrics import SCHEDULER_IN_FLIGHT

logger = logging.getLogger(__name__)


class ExecutionSlots:
    """Fixed pool of execution slots backed by ``asyncio.Semaphore``.

    The scheduler's dispatcher claims a slot *before* pulling from the
    priority queue, so the item it pulls is the best one ready at the
    moment a slot frees up.  Acquiring never times out.

    Usage::

        async with slots.slot():
            await run_one_item()
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._capacity = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        """Wait until a slot is free, then claim it."""
        await self._semaphore.acquire()
        self._in_use += 1
        SCHEDULER_IN_FLIGHT.inc()
        logger.debug("Execution slot acquired (%d/%d)", self._in_use, self._capacity)

    def release(self) -> None:
        """Free a slot so the dispatcher can pull the next item."""
        self._in_use = max(0, self._in_use - 1)
        SCHEDULER_IN_FLIGHT.dec()
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncGenerator[None, None]:
        """Convenience context-manager: acquire a slot, yield, release."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()
