"""Tests for the echo and duplicate suppressor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chatgate.configs.system import SuppressionConfig
from chatgate.core.admission import (
    EchoSuppressor,
    InboundMessageEvent,
    Verdict,
    normalize_text,
)

WALL_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Helpers
# =========================================================================


def _suppressor(clock, resolver=None, **overrides) -> EchoSuppressor:
    overrides.setdefault("startup_grace", timedelta(0))
    kwargs = {"clock": clock, "wall_clock": lambda: WALL_NOW}
    if resolver is not None:
        kwargs["resolver"] = resolver
    return EchoSuppressor(SuppressionConfig(**overrides), **kwargs)


def _event(msg_id: str, text: str = "hi there", key: str = "c1", **kwargs):
    return InboundMessageEvent(id=msg_id, conversation_key=key, text=text, **kwargs)


# =========================================================================
# Normalization
# =========================================================================


class TestNormalizeText:
    def test_case_and_whitespace(self):
        assert normalize_text("  Hello\n\tWORLD  ") == "hello world"

    def test_nfkc_width_forms(self):
        assert normalize_text("ＨＥＬＬＯ") == "hello"

    def test_blank_is_empty(self):
        assert normalize_text(" \n ") == ""


# =========================================================================
# Verdicts
# =========================================================================


class TestBasicVerdicts:
    @pytest.mark.asyncio
    async def test_fresh_event_admitted(self, clock):
        decision = await _suppressor(clock).classify(_event("m1"))
        assert decision.verdict is Verdict.ADMIT
        assert decision.admitted
        assert decision.conversation_key == "c1"

    @pytest.mark.asyncio
    async def test_startup_grace(self, clock):
        suppressor = _suppressor(clock, startup_grace=timedelta(seconds=10))
        decision = await suppressor.classify(_event("m1"))
        assert decision.verdict is Verdict.STARTUP_GRACE

        clock.advance(10)
        decision = await suppressor.classify(_event("m2"))
        assert decision.verdict is Verdict.ADMIT

    @pytest.mark.asyncio
    async def test_self_originated_flag(self, clock):
        decision = await _suppressor(clock).classify(
            _event("m1", is_self_originated=True)
        )
        assert decision.verdict is Verdict.SELF_ECHO
        assert decision.reason == "self_originated_flag"


class TestDuplicateDelivery:
    @pytest.mark.asyncio
    async def test_same_id_rejected(self, clock):
        suppressor = _suppressor(clock)
        assert (await suppressor.classify(_event("m1", "a"))).admitted
        decision = await suppressor.classify(_event("m1", "b"))
        assert decision.verdict is Verdict.DUPLICATE_DELIVERY
        assert decision.reason == "message_id_seen"

    @pytest.mark.asyncio
    async def test_same_id_admitted_after_ttl(self, clock):
        suppressor = _suppressor(clock, message_id_ttl=timedelta(seconds=60))
        await suppressor.classify(_event("m1", "a"))
        clock.advance(61)
        assert (await suppressor.classify(_event("m1", "b"))).admitted

    @pytest.mark.asyncio
    async def test_same_content_new_id_rejected(self, clock):
        suppressor = _suppressor(clock)
        await suppressor.classify(_event("m1", "Hello  there"))
        decision = await suppressor.classify(_event("m2", "hello there"))
        assert decision.verdict is Verdict.DUPLICATE_DELIVERY
        assert decision.reason == "content_seen"

    @pytest.mark.asyncio
    async def test_same_content_other_conversation_admitted(self, clock):
        suppressor = _suppressor(clock)
        await suppressor.classify(_event("m1", "ok", key="c1"))
        assert (await suppressor.classify(_event("m2", "ok", key="c2"))).admitted

    @pytest.mark.asyncio
    async def test_content_ttl(self, clock):
        suppressor = _suppressor(clock, content_ttl=timedelta(seconds=10))
        await suppressor.classify(_event("m1", "ok"))
        clock.advance(11)
        assert (await suppressor.classify(_event("m2", "ok"))).admitted

    @pytest.mark.asyncio
    async def test_empty_text_skips_content_check(self, clock):
        suppressor = _suppressor(clock)
        assert (await suppressor.classify(_event("m1", ""))).admitted
        assert (await suppressor.classify(_event("m2", ""))).admitted


class TestSelfEcho:
    @pytest.mark.asyncio
    async def test_echo_consumed_exactly_once(self, clock):
        suppressor = _suppressor(clock)
        suppressor.record_outbound("c1", "Sure, on it!")

        first = await suppressor.classify(_event("m1", "sure,  ON IT!"))
        assert first.verdict is Verdict.SELF_ECHO
        assert first.reason == "outbound_match_global"

        second = await suppressor.classify(_event("m2", "sure, on it!"))
        assert second.verdict is Verdict.ADMIT

    @pytest.mark.asyncio
    async def test_global_ledger_matches_any_conversation(self, clock):
        suppressor = _suppressor(clock)
        suppressor.record_outbound("c1", "done")
        decision = await suppressor.classify(_event("m1", "done", key="c2"))
        assert decision.verdict is Verdict.SELF_ECHO

    @pytest.mark.asyncio
    async def test_conversation_ledger_outlives_global(self, clock):
        suppressor = _suppressor(
            clock,
            global_outbound_ttl=timedelta(seconds=5),
            conversation_outbound_ttl=timedelta(minutes=5),
        )
        suppressor.record_outbound("c1", "done")
        clock.advance(10)

        decision = await suppressor.classify(_event("m1", "done"))
        assert decision.verdict is Verdict.SELF_ECHO
        assert decision.reason == "outbound_match_conversation"

        again = await suppressor.classify(_event("m2", "done"))
        assert again.verdict is Verdict.ADMIT

    @pytest.mark.asyncio
    async def test_echo_expires(self, clock):
        suppressor = _suppressor(
            clock,
            global_outbound_ttl=timedelta(minutes=5),
            conversation_outbound_ttl=timedelta(minutes=5),
        )
        suppressor.record_outbound("c1", "done")
        clock.advance(301)
        assert (await suppressor.classify(_event("m1", "done"))).admitted

    @pytest.mark.asyncio
    async def test_blank_outbound_not_recorded(self, clock):
        suppressor = _suppressor(clock)
        suppressor.record_outbound("c1", "   ")
        assert (await suppressor.classify(_event("m1", ""))).admitted

    @pytest.mark.asyncio
    async def test_expired_conversation_ledgers_dropped_on_record(self, clock):
        suppressor = _suppressor(
            clock,
            global_outbound_ttl=timedelta(seconds=5),
            conversation_outbound_ttl=timedelta(seconds=30),
        )
        suppressor.record_outbound("c1", "done")
        suppressor.record_outbound("c2", "on it")
        assert set(suppressor._conversation_outbound) == {"c1", "c2"}

        clock.advance(31)
        suppressor.record_outbound("c3", "sure")
        assert set(suppressor._conversation_outbound) == {"c3"}


# =========================================================================
# Resolution and staleness
# =========================================================================


async def _unresolved(event):
    return None


class TestStaleness:
    @pytest.mark.asyncio
    async def test_unresolved_uses_short_ceiling(self, clock):
        suppressor = _suppressor(clock, resolver=_unresolved)
        event = _event("m1", origin_timestamp=WALL_NOW - timedelta(minutes=3))
        decision = await suppressor.classify(event)
        assert decision.verdict is Verdict.STALE_BACKLOG
        assert decision.conversation_key == "c1"

    @pytest.mark.asyncio
    async def test_resolved_uses_long_ceiling(self, clock):
        suppressor = _suppressor(clock)
        event = _event("m1", origin_timestamp=WALL_NOW - timedelta(minutes=3))
        assert (await suppressor.classify(event)).admitted

        old = _event("m2", "other", origin_timestamp=WALL_NOW - timedelta(minutes=11))
        assert (await suppressor.classify(old)).verdict is Verdict.STALE_BACKLOG

    @pytest.mark.asyncio
    async def test_naive_origin_treated_as_utc(self, clock):
        suppressor = _suppressor(clock)
        naive = (WALL_NOW - timedelta(minutes=11)).replace(tzinfo=None)
        decision = await suppressor.classify(_event("m1", origin_timestamp=naive))
        assert decision.verdict is Verdict.STALE_BACKLOG

    @pytest.mark.asyncio
    async def test_resolver_sets_conversation(self, clock):
        async def resolver(event):
            return f"thread:{event.conversation_key}"

        suppressor = _suppressor(clock, resolver=resolver)
        decision = await suppressor.classify(_event("m1"))
        assert decision.conversation_key == "thread:c1"


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_resolver_error_admits(self, clock, caplog):
        async def broken(event):
            raise RuntimeError("lookup failed")

        suppressor = _suppressor(clock, resolver=broken)
        decision = await suppressor.classify(_event("m1"))
        assert decision.verdict is Verdict.ADMIT
        assert decision.reason == "resolve_conversation_error"
        assert "lookup failed" in caplog.text
