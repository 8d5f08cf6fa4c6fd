"""Start/stop signals emitted around each provider attempt.

The scheduler only knows the ``Signaler`` capability.  ``SignalBus`` is
the stock implementation: it fans each signal out to any number of
subscribers (the typing indicator, an embedding app's own hooks) and
keeps one misbehaving subscriber from affecting the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Signaler(Protocol):
    async def started(self, conversation_key: str, description: str) -> None: ...

    async def stopped(self, conversation_key: str, description: str) -> None: ...


class SignalBus:
    def __init__(self) -> None:
        self._subscribers: list[Signaler] = []

    def subscribe(self, subscriber: Signaler) -> Callable[[], None]:
        """Register *subscriber*; returns a callable that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def started(self, conversation_key: str, description: str) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber.started(conversation_key, description)
            except Exception:
                logger.exception(
                    "Signal subscriber %r failed on started(%s)",
                    subscriber,
                    conversation_key,
                )

    async def stopped(self, conversation_key: str, description: str) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber.stopped(conversation_key, description)
            except Exception:
                logger.exception(
                    "Signal subscriber %r failed on stopped(%s)",
                    subscriber,
                    conversation_key,
                )
