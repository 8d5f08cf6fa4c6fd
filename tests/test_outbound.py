"""Tests for outbound delivery: breaker, fingerprinting, sender errors."""

from __future__ import annotations

from datetime import timedelta

import pytest

from chatgate.configs.system import SuppressionConfig
from chatgate.core.admission import (
    EchoSuppressor,
    InboundMessageEvent,
    ResponseRateLimiter,
    Verdict,
)
from chatgate.core.outbound import FALLBACK_REPLY, OutboundDispatcher


class _Sender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, conversation_key: str, text: str) -> None:
        self.sent.append((conversation_key, text))


def _dispatcher(clock, sender, max_per_window: int = 5):
    suppressor = EchoSuppressor(
        SuppressionConfig(startup_grace=timedelta(0)), clock=clock
    )
    limiter = ResponseRateLimiter(
        timedelta(seconds=30), max_per_window, clock=clock
    )
    return OutboundDispatcher(sender, suppressor, limiter), suppressor


class TestOutboundDispatcher:
    @pytest.mark.asyncio
    async def test_delivered_reply_is_recognised_as_echo(self, clock):
        sender = _Sender()
        dispatcher, suppressor = _dispatcher(clock, sender)

        assert await dispatcher.deliver("c1", "On my way!") is True
        assert sender.sent == [("c1", "On my way!")]

        echo = InboundMessageEvent(id="m1", conversation_key="c1", text="on my way!")
        decision = await suppressor.classify(echo)
        assert decision.verdict is Verdict.SELF_ECHO

    @pytest.mark.asyncio
    async def test_breaker_suppresses_reply(self, clock):
        sender = _Sender()
        dispatcher, _ = _dispatcher(clock, sender, max_per_window=2)

        results = [await dispatcher.deliver("c1", f"reply {i}") for i in range(3)]
        assert results == [True, True, False]
        assert len(sender.sent) == 2

    @pytest.mark.asyncio
    async def test_sender_error_propagates(self, clock):
        async def broken(conversation_key: str, text: str) -> None:
            raise ConnectionError("bridge down")

        dispatcher, _ = _dispatcher(clock, broken)
        with pytest.raises(ConnectionError):
            await dispatcher.deliver("c1", "hello")

    def test_fallback_reply_text(self):
        assert FALLBACK_REPLY == (
            "I'm having trouble processing your message right now. "
            "Please try again later."
        )
