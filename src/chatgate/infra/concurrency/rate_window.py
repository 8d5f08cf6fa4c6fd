"""RateWindow: trailing-minute quota tracking for the upstream provider.

Three independent dimensions are tracked over the same trailing window:

1. **requests**: one per reservation.
2. **input tokens**: the caller's estimate, corrected to actual usage
   via ``Permit.complete`` once the provider reports it.
3. **output tokens**: same as input tokens.

``reserve`` trims entries older than the window, checks all three caps,
and either records the reservation immediately or computes how long it
takes for enough of the oldest entries to age out.  The *maximum* wait
over the three dimensions is slept before trying again, so no dimension
can starve another.

Waiters are served one at a time in arrival order (``asyncio.Lock``),
which keeps the scheduler's priority order intact once items have been
dispatched.  Clock and sleep are injectable so tests can drive the
window with simulated time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from chatgate.configs.system import ProviderLimitsConfig
from chatgate.infra.metrics import (
    RATE_WINDOW_RESERVATIONS_TOTAL,
    RATE_WINDOW_WAIT_SECONDS,
)
from chatgate.infra.telemetry import (
    ATTR_RATE_WINDOW_INPUT_TOKENS,
    ATTR_RATE_WINDOW_OUTPUT_TOKENS,
    ATTR_RATE_WINDOW_WAIT,
    SPAN_RATE_WINDOW_RESERVE,
    tracer,
)

from .base import RateLimitExceeded

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_WINDOW = timedelta(seconds=60)

# Added to every computed wait so the entry is strictly outside the window
# when the waiter wakes up, regardless of float rounding.
_WAIT_SLACK = 0.001


@dataclass
class _WindowEntry:
    timestamp: float
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class WindowUsage:
    """Totals inside the trailing window at one instant."""

    requests: int
    input_tokens: int
    output_tokens: int


class Permit:
    """A granted reservation.

    Call ``complete`` once the real usage is known; the window entry is
    rewritten in place so later capacity checks use actual numbers.
    """

    __slots__ = ("_entry", "_completed")

    def __init__(self, entry: _WindowEntry) -> None:
        self._entry = entry
        self._completed = False

    @property
    def input_tokens(self) -> int:
        return self._entry.input_tokens

    @property
    def output_tokens(self) -> int:
        return self._entry.output_tokens

    @property
    def completed(self) -> bool:
        return self._completed

    def complete(
        self,
        actual_input_tokens: int | None = None,
        actual_output_tokens: int | None = None,
    ) -> None:
        """Correct the reservation to actual usage (first call wins).

        A missing value keeps the estimate that was reserved.
        """
        if self._completed:
            return
        self._completed = True
        if actual_input_tokens is not None:
            self._entry.input_tokens = max(0, int(actual_input_tokens))
        if actual_output_tokens is not None:
            self._entry.output_tokens = max(0, int(actual_output_tokens))


class RateWindow:
    """Sliding-window limiter over requests, input tokens and output tokens.

    Usage::

        window = RateWindow.from_config(config.provider)

        permit = await window.reserve(1_200, 350)
        response = await call_provider()
        permit.complete(response.usage.input_tokens, response.usage.output_tokens)

    A cap of zero or less disables that dimension.
    """

    def __init__(
        self,
        *,
        requests_per_minute: int,
        input_tokens_per_minute: int,
        output_tokens_per_minute: int,
        window: timedelta = DEFAULT_WINDOW,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._requests_cap = requests_per_minute
        self._input_cap = input_tokens_per_minute
        self._output_cap = output_tokens_per_minute
        self._window = window.total_seconds()
        self._clock = clock
        self._sleep = sleep
        self._entries: deque[_WindowEntry] = deque()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: ProviderLimitsConfig, **kwargs) -> RateWindow:
        return cls(
            requests_per_minute=config.requests_per_minute,
            input_tokens_per_minute=config.input_tokens_per_minute,
            output_tokens_per_minute=config.output_tokens_per_minute,
            **kwargs,
        )

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def reserve(
        self,
        estimated_input_tokens: int = 0,
        estimated_output_tokens: int = 0,
    ) -> Permit:
        """Wait until the reservation fits every cap, then record it."""
        input_tokens = max(0, int(estimated_input_tokens))
        output_tokens = max(0, int(estimated_output_tokens))

        with tracer.start_as_current_span(SPAN_RATE_WINDOW_RESERVE) as span:
            span.set_attribute(ATTR_RATE_WINDOW_INPUT_TOKENS, input_tokens)
            span.set_attribute(ATTR_RATE_WINDOW_OUTPUT_TOKENS, output_tokens)

            start = self._clock()
            waited = False
            async with self._lock:
                while True:
                    try:
                        entry = self._try_reserve(input_tokens, output_tokens)
                        break
                    except RateLimitExceeded as exc:
                        waited = True
                        logger.debug(
                            "Rate window full on %s; waiting %.3fs",
                            exc.dimension,
                            exc.wait_seconds,
                        )
                        await self._sleep(exc.wait_seconds)

            elapsed = self._clock() - start
            span.set_attribute(ATTR_RATE_WINDOW_WAIT, elapsed)

        RATE_WINDOW_WAIT_SECONDS.observe(elapsed)
        RATE_WINDOW_RESERVATIONS_TOTAL.labels(waited="yes" if waited else "no").inc()
        logger.debug(
            "Rate window permit granted (input=%d, output=%d, requests=%d)",
            input_tokens,
            output_tokens,
            len(self._entries),
        )
        return Permit(entry)

    def usage(self) -> WindowUsage:
        """Current totals inside the trailing window."""
        self._trim(self._clock())
        return WindowUsage(
            requests=len(self._entries),
            input_tokens=sum(e.input_tokens for e in self._entries),
            output_tokens=sum(e.output_tokens for e in self._entries),
        )

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _try_reserve(self, input_tokens: int, output_tokens: int) -> _WindowEntry:
        now = self._clock()
        self._trim(now)

        waits = {
            "requests": self._request_wait(now),
            "input_tokens": self._token_wait(
                now, input_tokens, self._input_cap, lambda e: e.input_tokens
            ),
            "output_tokens": self._token_wait(
                now, output_tokens, self._output_cap, lambda e: e.output_tokens
            ),
        }
        dimension, wait = max(waits.items(), key=lambda kv: kv[1])
        if wait > 0:
            raise RateLimitExceeded(wait + _WAIT_SLACK, dimension=dimension)

        entry = _WindowEntry(now, input_tokens, output_tokens)
        self._entries.append(entry)
        return entry

    def _trim(self, now: float) -> None:
        cutoff = now - self._window
        while self._entries and self._entries[0].timestamp <= cutoff:
            self._entries.popleft()

    def _request_wait(self, now: float) -> float:
        if self._requests_cap <= 0:
            return 0.0
        excess = len(self._entries) + 1 - self._requests_cap
        if excess <= 0:
            return 0.0
        # The excess-th oldest entry has to leave the window.
        return self._entries[excess - 1].timestamp + self._window - now

    def _token_wait(
        self,
        now: float,
        requested: int,
        cap: int,
        tokens_of: Callable[[_WindowEntry], int],
    ) -> float:
        if cap <= 0:
            return 0.0
        used = sum(tokens_of(e) for e in self._entries)
        if used + requested <= cap:
            return 0.0
        if requested > cap:
            # Never fits alongside anything else: admit once fully drained.
            if not self._entries:
                return 0.0
            return self._entries[-1].timestamp + self._window - now
        freed = 0
        for entry in self._entries:
            freed += tokens_of(entry)
            if used - freed + requested <= cap:
                return entry.timestamp + self._window - now
        return 0.0  # unreachable: freeing everything leaves requested <= cap
