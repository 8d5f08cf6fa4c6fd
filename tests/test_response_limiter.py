"""Tests for the per-conversation response circuit breaker."""

from __future__ import annotations

from datetime import timedelta

from chatgate.configs.system import ResponseLimitConfig
from chatgate.core.admission import ResponseRateLimiter


def _limiter(clock) -> ResponseRateLimiter:
    return ResponseRateLimiter.from_config(
        ResponseLimitConfig(window=timedelta(seconds=30), max_per_window=5),
        clock=clock,
    )


class TestResponseRateLimiter:
    def test_sixth_response_refused(self, clock):
        limiter = _limiter(clock)
        assert [limiter.allow("c1") for _ in range(6)] == [True] * 5 + [False]

    def test_allowed_again_after_rollover(self, clock):
        limiter = _limiter(clock)
        for _ in range(6):
            limiter.allow("c1")
        clock.advance(30)
        assert limiter.allow("c1") is False
        clock.advance(1)
        assert limiter.allow("c1") is True

    def test_window_starts_at_first_response(self, clock):
        limiter = _limiter(clock)
        limiter.allow("c1")
        clock.advance(20)
        for _ in range(4):
            assert limiter.allow("c1") is True
        clock.advance(11)
        # The window opened 31s ago, so this resets the count.
        assert limiter.allow("c1") is True

    def test_conversations_independent(self, clock):
        limiter = _limiter(clock)
        for _ in range(5):
            limiter.allow("c1")
        assert limiter.allow("c1") is False
        assert limiter.allow("c2") is True

    def test_reset(self, clock):
        limiter = _limiter(clock)
        for _ in range(5):
            limiter.allow("c1")
        limiter.reset("c1")
        assert limiter.allow("c1") is True

    def test_expired_windows_pruned(self, clock):
        limiter = _limiter(clock)
        for key in ("c1", "c2", "c3"):
            limiter.allow(key)
        assert len(limiter) == 3

        clock.advance(31)
        assert limiter.allow("c4") is True
        assert len(limiter) == 1
