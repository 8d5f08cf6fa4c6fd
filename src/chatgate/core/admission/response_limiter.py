"""ResponseRateLimiter: per-conversation circuit breaker for replies.

A fixed window per conversation: the first response opens the window,
later ones count up to ``max_per_window``, anything beyond is refused
until the window rolls over.  Refusals are logged as warnings: a full
window usually means a reply loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from chatgate.configs.system import ResponseLimitConfig
from chatgate.infra.metrics import RESPONSE_LIMIT_REFUSALS_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    count: int
    window_start: float


class ResponseRateLimiter:
    def __init__(
        self,
        window: timedelta,
        max_per_window: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window.total_seconds()
        self._max = max_per_window
        self._clock = clock
        self._states: dict[str, _WindowState] = {}

    @classmethod
    def from_config(cls, config: ResponseLimitConfig, **kwargs) -> ResponseRateLimiter:
        return cls(config.window, config.max_per_window, **kwargs)

    def allow(self, conversation_key: str) -> bool:
        """Count one response for *conversation_key*; ``False`` means suppress it."""
        now = self._clock()
        self._prune(now)
        state = self._states.get(conversation_key)
        if state is None:
            self._states[conversation_key] = _WindowState(count=1, window_start=now)
            return True
        if state.count < self._max:
            state.count += 1
            return True

        RESPONSE_LIMIT_REFUSALS_TOTAL.inc()
        logger.warning(
            "Response limit reached for %s (%d in %.0fs); possible reply loop",
            conversation_key,
            state.count,
            self._window,
        )
        return False

    def reset(self, conversation_key: str) -> None:
        self._states.pop(conversation_key, None)

    def __len__(self) -> int:
        return len(self._states)

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, state in self._states.items()
            if now - state.window_start > self._window
        ]
        for key in expired:
            del self._states[key]
