"""DebounceCoalescer: merges rapid-fire messages into one unit of work.

Each conversation owns at most one buffer and one pending timer.  Every
new event cancels the timer and starts a fresh one; when a timer runs
out the buffer is detached from the registry in the same synchronous
step, so an event arriving while the unit is being handled starts a new
buffer instead of being lost.

Usage::

    coalescer = DebounceCoalescer(timedelta(seconds=1.5), handle_unit)
    await coalescer.submit(decision.conversation_key, event)
    ...
    await coalescer.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from chatgate.infra.id_utils import UNIT_PREFIX, generate_id
from chatgate.infra.metrics import (
    DEBOUNCE_FLUSHES_TOTAL,
    DEBOUNCE_MESSAGES_PER_UNIT,
    DEBOUNCE_PENDING_CONVERSATIONS,
)
from chatgate.infra.telemetry import (
    ATTR_DEBOUNCE_MESSAGE_COUNT,
    SPAN_DEBOUNCE_FLUSH,
    tracer,
)

from .models import InboundMessageEvent, WorkUnit

logger = logging.getLogger(__name__)

UnitHandler = Callable[[WorkUnit], Awaitable[None]]


@dataclass
class _Buffer:
    events: list[InboundMessageEvent] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None


def merge_events(conversation_key: str, events: list[InboundMessageEvent]) -> WorkUnit:
    """Build one ``WorkUnit`` from a non-empty burst, in arrival order."""
    last = events[-1]
    if len(events) == 1:
        text = last.text
    else:
        text = "\n".join(event.text for event in events if event.text)
    return WorkUnit(
        unit_id=generate_id(UNIT_PREFIX),
        conversation_key=conversation_key,
        text=text,
        message_ids=tuple(event.id for event in events),
        event=last,
    )


class DebounceCoalescer:
    """Per-conversation quiet-period buffer in front of *handler*.

    A quiet period of zero hands every event downstream immediately.
    Handler failures are logged and never reach the timers.
    """

    def __init__(self, quiet_period: timedelta, handler: UnitHandler) -> None:
        self._quiet = quiet_period.total_seconds()
        self._handler = handler
        self._buffers: dict[str, _Buffer] = {}
        self._dispatching: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, conversation_key: str, event: InboundMessageEvent) -> None:
        """Buffer *event* and restart the conversation's quiet timer."""
        if self._closed:
            logger.warning(
                "Coalescer closed; dropping message %s for %s",
                event.id,
                conversation_key,
            )
            return

        if self._quiet <= 0:
            await self._dispatch(merge_events(conversation_key, [event]), "timer")
            return

        buffer = self._buffers.get(conversation_key)
        if buffer is None:
            buffer = _Buffer()
            self._buffers[conversation_key] = buffer
            DEBOUNCE_PENDING_CONVERSATIONS.set(len(self._buffers))
        elif buffer.timer is not None:
            buffer.timer.cancel()

        buffer.events.append(event)
        buffer.timer = asyncio.create_task(
            self._fire_after_quiet(conversation_key, buffer),
            name=f"debounce:{conversation_key}",
        )

    async def flush(self, conversation_key: str) -> WorkUnit | None:
        """Dispatch the conversation's buffer now, skipping the timer."""
        buffer = self._detach(conversation_key)
        if buffer is None:
            return None
        if buffer.timer is not None:
            buffer.timer.cancel()
        unit = merge_events(conversation_key, buffer.events)
        await self._dispatch(unit, "manual")
        return unit

    async def flush_all(self) -> list[WorkUnit]:
        units = []
        for key in list(self._buffers):
            unit = await self.flush(key)
            if unit is not None:
                units.append(unit)
        return units

    def pending_count(self, conversation_key: str) -> int:
        buffer = self._buffers.get(conversation_key)
        return len(buffer.events) if buffer else 0

    def is_pending(self, conversation_key: str) -> bool:
        return conversation_key in self._buffers

    async def aclose(self) -> None:
        """Cancel timers, discard buffered bursts and wait for dispatches."""
        self._closed = True
        for key, buffer in list(self._buffers.items()):
            if buffer.timer is not None:
                buffer.timer.cancel()
            logger.warning(
                "Discarding %d buffered message(s) for %s on shutdown",
                len(buffer.events),
                key,
            )
        self._buffers.clear()
        DEBOUNCE_PENDING_CONVERSATIONS.set(0)
        if self._dispatching:
            await asyncio.gather(*self._dispatching, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _detach(self, conversation_key: str) -> _Buffer | None:
        buffer = self._buffers.pop(conversation_key, None)
        if buffer is not None:
            DEBOUNCE_PENDING_CONVERSATIONS.set(len(self._buffers))
        return buffer

    async def _fire_after_quiet(self, conversation_key: str, buffer: _Buffer) -> None:
        await asyncio.sleep(self._quiet)
        if self._buffers.get(conversation_key) is not buffer:
            return
        self._detach(conversation_key)

        task = asyncio.current_task()
        if task is not None:
            self._dispatching.add(task)
        try:
            await self._dispatch(merge_events(conversation_key, buffer.events), "timer")
        finally:
            if task is not None:
                self._dispatching.discard(task)

    async def _dispatch(self, unit: WorkUnit, trigger: str) -> None:
        DEBOUNCE_FLUSHES_TOTAL.labels(trigger=trigger).inc()
        DEBOUNCE_MESSAGES_PER_UNIT.observe(unit.count)
        with tracer.start_as_current_span(SPAN_DEBOUNCE_FLUSH) as span:
            span.set_attribute(ATTR_DEBOUNCE_MESSAGE_COUNT, unit.count)
            logger.debug(
                "Flushing %s for %s (%d message(s))",
                unit.unit_id,
                unit.conversation_key,
                unit.count,
            )
            try:
                await self._handler(unit)
            except Exception:
                logger.exception(
                    "Work unit handler failed for %s (%s)",
                    unit.conversation_key,
                    unit.unit_id,
                )
