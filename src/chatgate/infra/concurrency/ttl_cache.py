"""Time-windowed caches with lazy eviction.

Both structures are owned by the event loop: every public method is a
synchronous critical section (no ``await`` inside), so concurrent
coroutines can share one instance without a lock.  Expired entries are
dropped on the next lookup or insert; there is no background sweeper.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

Clock = Callable[[], float]


class ExpiringKeySet:
    """Insert-if-absent set whose members expire a fixed TTL after insertion.

    A non-positive TTL disables the set: ``add_if_absent`` always
    succeeds and nothing is remembered.
    """

    def __init__(self, ttl: timedelta, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl.total_seconds()
        self._clock = clock
        # Insertion order == expiry order because the TTL is fixed.
        self._expiries: dict[str, float] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def add_if_absent(self, key: str) -> bool:
        """Record *key*.  Returns ``False`` if it was already present."""
        if not self.enabled:
            return True
        now = self._clock()
        self._evict(now)
        if key in self._expiries:
            return False
        self._expiries[key] = now + self._ttl
        return True

    def __contains__(self, key: object) -> bool:
        self._evict(self._clock())
        return key in self._expiries

    def __len__(self) -> int:
        self._evict(self._clock())
        return len(self._expiries)

    def clear(self) -> None:
        self._expiries.clear()

    def _evict(self, now: float) -> None:
        while self._expiries:
            key, expiry = next(iter(self._expiries.items()))
            if expiry > now:
                break
            del self._expiries[key]


@dataclass(eq=False)
class OutboundFingerprint:
    """One message the system sent, as seen by the echo ledgers.

    The same object is appended to the global ledger and to its
    conversation's ledger; ``consumed`` hides it from both once either
    ledger matched it.
    """

    conversation_key: str
    text: str
    recorded_at: float
    consumed: bool = False


class OutboundLedger:
    """Ordered outbound fingerprints visible for ``ttl`` after recording."""

    def __init__(self, ttl: timedelta, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl.total_seconds()
        self._clock = clock
        self._entries: deque[OutboundFingerprint] = deque()

    def append(self, entry: OutboundFingerprint) -> None:
        self._evict(self._clock())
        self._entries.append(entry)

    def consume(self, text: str) -> OutboundFingerprint | None:
        """Return and retire the oldest live entry whose text equals *text*."""
        self._evict(self._clock())
        for entry in self._entries:
            if not entry.consumed and entry.text == text:
                entry.consumed = True
                self._entries.remove(entry)
                return entry
        return None

    def __len__(self) -> int:
        self._evict(self._clock())
        return sum(1 for entry in self._entries if not entry.consumed)

    def _evict(self, now: float) -> None:
        cutoff = now - self._ttl
        while self._entries and (
            self._entries[0].consumed or self._entries[0].recorded_at <= cutoff
        ):
            self._entries.popleft()
