"""ActivityIndicator: drives the transport's typing indicator.

Subscribes to scheduler signals.  Each conversation tracks its owners,
keyed by the signal description (the scheduler sends one per request,
the same on every retry).  The indicator turns on with the first owner
and turns off when the last one stops.  A repeated ``started`` from the
same owner, as when a retried request runs again, is a no-op.
Every session is also switched off after ``max_duration``, whether or
not its ``stopped`` signal arrives.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from chatgate.configs.system import TypingConfig
from chatgate.infra.metrics import TYPING_SESSIONS_ACTIVE

logger = logging.getLogger(__name__)

TypingToggle = Callable[[str, bool], Awaitable[None]]


@dataclass
class _Session:
    owners: set[str] = field(default_factory=set)
    auto_stop: asyncio.Task[None] | None = None


class ActivityIndicator:
    def __init__(
        self,
        toggle: TypingToggle,
        *,
        enabled: bool = True,
        max_duration: timedelta = timedelta(seconds=30),
    ) -> None:
        self._toggle = toggle
        self._enabled = enabled
        self._max_duration = max_duration.total_seconds()
        self._sessions: dict[str, _Session] = {}

    @classmethod
    def from_config(cls, config: TypingConfig, toggle: TypingToggle) -> ActivityIndicator:
        return cls(toggle, enabled=config.enabled, max_duration=config.max_duration)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_active(self, conversation_key: str) -> bool:
        return conversation_key in self._sessions

    # ------------------------------------------------------------------
    # Signaler
    # ------------------------------------------------------------------

    async def started(self, conversation_key: str, description: str) -> None:
        if not self._enabled:
            return
        session = self._sessions.get(conversation_key)
        if session is not None:
            session.owners.add(description)
            return

        session = _Session(owners={description})
        self._sessions[conversation_key] = session
        if self._max_duration > 0:
            session.auto_stop = asyncio.create_task(
                self._auto_stop(conversation_key, session),
                name=f"typing-auto-stop:{conversation_key}",
            )
        TYPING_SESSIONS_ACTIVE.inc()
        logger.debug("Typing on for %s (%s)", conversation_key, description)
        await self._send(conversation_key, True)

    async def stopped(self, conversation_key: str, description: str) -> None:
        session = self._sessions.get(conversation_key)
        if session is None:
            return
        session.owners.discard(description)
        if session.owners:
            return
        logger.debug("Typing off for %s (%s)", conversation_key, description)
        await self._end(conversation_key, session)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop_all(self) -> None:
        for key, session in list(self._sessions.items()):
            await self._end(key, session)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _end(self, conversation_key: str, session: _Session) -> None:
        if self._sessions.get(conversation_key) is not session:
            return
        del self._sessions[conversation_key]
        TYPING_SESSIONS_ACTIVE.dec()
        if session.auto_stop is not None and session.auto_stop is not asyncio.current_task():
            session.auto_stop.cancel()
        await self._send(conversation_key, False)

    async def _auto_stop(self, conversation_key: str, session: _Session) -> None:
        await asyncio.sleep(self._max_duration)
        logger.warning(
            "Typing indicator for %s still on after %.0fs; switching it off",
            conversation_key,
            self._max_duration,
        )
        await self._end(conversation_key, session)

    async def _send(self, conversation_key: str, enabled: bool) -> None:
        try:
            await self._toggle(conversation_key, enabled)
        except Exception:
            logger.exception(
                "Typing toggle failed for %s (enabled=%s)", conversation_key, enabled
            )
