"""EchoSuppressor: decides whether an inbound event is new work.

Classification runs an ordered list of predicates and stops at the first
rejection:

1. startup grace          → ``STARTUP_GRACE``
2. self-originated flag   → ``SELF_ECHO``
3. delivery id seen       → ``DUPLICATE_DELIVERY``
4. global outbound match  → ``SELF_ECHO`` (consumes the fingerprint)
5. conversation resolution (no verdict)
6. origin too old         → ``STALE_BACKLOG``
7. conversation outbound  → ``SELF_ECHO`` (consumes the fingerprint)
8. content seen           → ``DUPLICATE_DELIVERY``

Any exception raised while classifying is logged and the event is
admitted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from chatgate.configs.system import SuppressionConfig
from chatgate.infra.concurrency.ttl_cache import (
    ExpiringKeySet,
    OutboundFingerprint,
    OutboundLedger,
)
from chatgate.infra.metrics import (
    ADMISSION_DECISIONS_TOTAL,
    OUTBOUND_FINGERPRINTS_TOTAL,
)
from chatgate.infra.telemetry import (
    ATTR_ADMISSION_REASON,
    ATTR_ADMISSION_VERDICT,
    SPAN_ADMISSION_CLASSIFY,
    tracer,
)

from .models import AdmissionDecision, InboundMessageEvent, Verdict
from .normalize import normalize_text

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
WallClock = Callable[[], datetime]
ConversationResolver = Callable[[InboundMessageEvent], Awaitable[str | None]]


async def resolve_transport_key(event: InboundMessageEvent) -> str | None:
    """Default resolver: the transport's conversation key is authoritative."""
    return event.conversation_key


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Classification:
    """Mutable scratch state threaded through the predicates."""

    event: InboundMessageEvent
    normalized: str
    conversation_key: str
    resolved: bool = False


@dataclass(frozen=True)
class _Rejection:
    verdict: Verdict
    reason: str


_Predicate = Callable[[_Classification], Awaitable["_Rejection | None"]]


class EchoSuppressor:
    """Multi-layer duplicate and echo filter for one process.

    Parameters
    ----------
    config:
        TTLs, startup grace and staleness ceilings.
    clock:
        Monotonic seconds; drives every TTL and the startup grace.
    wall_clock:
        Aware ``datetime`` factory compared against ``origin_timestamp``.
    resolver:
        Maps an event to its conversation; ``None`` means unresolved.
    started_at:
        Monotonic start instant for the grace period (defaults to now).
    """

    def __init__(
        self,
        config: SuppressionConfig,
        *,
        clock: Clock = time.monotonic,
        wall_clock: WallClock = _utcnow,
        resolver: ConversationResolver = resolve_transport_key,
        started_at: float | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._wall_clock = wall_clock
        self._resolver = resolver
        self._started_at = clock() if started_at is None else started_at
        self._grace = config.startup_grace.total_seconds()

        self._seen_ids = ExpiringKeySet(config.message_id_ttl, clock=clock)
        self._seen_content = ExpiringKeySet(config.content_ttl, clock=clock)
        self._global_outbound = OutboundLedger(config.global_outbound_ttl, clock=clock)
        self._conversation_outbound: dict[str, OutboundLedger] = {}

        self._predicates: list[tuple[str, _Predicate]] = [
            ("startup_grace", self._check_startup_grace),
            ("self_originated", self._check_self_originated),
            ("message_id", self._check_message_id),
            ("global_outbound", self._check_global_outbound),
            ("resolve_conversation", self._resolve_conversation),
            ("staleness", self._check_staleness),
            ("conversation_outbound", self._check_conversation_outbound),
            ("content", self._check_content),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def classify(self, event: InboundMessageEvent) -> AdmissionDecision:
        """Run the predicate chain for *event*.  Never raises."""
        with tracer.start_as_current_span(SPAN_ADMISSION_CLASSIFY) as span:
            decision = await self._classify(event)
            span.set_attribute(ATTR_ADMISSION_VERDICT, decision.verdict.value)
            if decision.reason:
                span.set_attribute(ATTR_ADMISSION_REASON, decision.reason)

        ADMISSION_DECISIONS_TOTAL.labels(verdict=decision.verdict.value).inc()
        if decision.admitted:
            logger.debug(
                "Admitted message %s in conversation %s",
                event.id,
                decision.conversation_key,
            )
        else:
            logger.info(
                "Dropped message %s in conversation %s: %s (%s)",
                event.id,
                decision.conversation_key,
                decision.verdict.value,
                decision.reason,
            )
        return decision

    def record_outbound(self, conversation_key: str, text: str) -> None:
        """Remember a message we just sent so its echo can be recognised.

        One fingerprint is shared by the global ledger and the
        conversation's ledger; matching it through either retires it.
        """
        normalized = normalize_text(text)
        if not normalized:
            return
        self._drop_empty_ledgers()
        fingerprint = OutboundFingerprint(
            conversation_key=conversation_key,
            text=normalized,
            recorded_at=self._clock(),
        )
        self._global_outbound.append(fingerprint)
        ledger = self._conversation_outbound.get(conversation_key)
        if ledger is None:
            ledger = OutboundLedger(
                self._config.conversation_outbound_ttl, clock=self._clock
            )
            self._conversation_outbound[conversation_key] = ledger
        ledger.append(fingerprint)
        OUTBOUND_FINGERPRINTS_TOTAL.inc()

    def _drop_empty_ledgers(self) -> None:
        empty = [
            key for key, ledger in self._conversation_outbound.items() if not len(ledger)
        ]
        for key in empty:
            del self._conversation_outbound[key]

    # ------------------------------------------------------------------
    # Chain runner
    # ------------------------------------------------------------------

    async def _classify(self, event: InboundMessageEvent) -> AdmissionDecision:
        state = _Classification(
            event=event,
            normalized=normalize_text(event.text),
            conversation_key=event.conversation_key,
        )
        for name, predicate in self._predicates:
            try:
                rejection = await predicate(state)
            except Exception:
                logger.exception(
                    "Admission check %r failed for message %s; admitting",
                    name,
                    event.id,
                )
                return AdmissionDecision(
                    verdict=Verdict.ADMIT,
                    conversation_key=state.conversation_key,
                    reason=f"{name}_error",
                )
            if rejection is not None:
                return AdmissionDecision(
                    verdict=rejection.verdict,
                    conversation_key=state.conversation_key,
                    reason=rejection.reason,
                )
        return AdmissionDecision(
            verdict=Verdict.ADMIT, conversation_key=state.conversation_key
        )

    # ------------------------------------------------------------------
    # Predicates (in evaluation order)
    # ------------------------------------------------------------------

    async def _check_startup_grace(self, state: _Classification) -> _Rejection | None:
        if self._grace > 0 and self._clock() - self._started_at < self._grace:
            return _Rejection(Verdict.STARTUP_GRACE, "within_startup_grace")
        return None

    async def _check_self_originated(self, state: _Classification) -> _Rejection | None:
        if state.event.is_self_originated:
            return _Rejection(Verdict.SELF_ECHO, "self_originated_flag")
        return None

    async def _check_message_id(self, state: _Classification) -> _Rejection | None:
        if state.event.id and not self._seen_ids.add_if_absent(state.event.id):
            return _Rejection(Verdict.DUPLICATE_DELIVERY, "message_id_seen")
        return None

    async def _check_global_outbound(self, state: _Classification) -> _Rejection | None:
        if not state.normalized:
            return None
        if self._global_outbound.consume(state.normalized) is not None:
            return _Rejection(Verdict.SELF_ECHO, "outbound_match_global")
        return None

    async def _resolve_conversation(self, state: _Classification) -> None:
        resolved = await self._resolver(state.event)
        if resolved:
            state.conversation_key = resolved
            state.resolved = True
        return None

    async def _check_staleness(self, state: _Classification) -> _Rejection | None:
        origin = state.event.origin_timestamp
        if origin is None:
            return None
        if origin.tzinfo is None:
            origin = origin.replace(tzinfo=timezone.utc)
        ceiling: timedelta = (
            self._config.stale_after_resolve
            if state.resolved
            else self._config.stale_before_resolve
        )
        if ceiling.total_seconds() <= 0:
            return None
        if self._wall_clock() - origin > ceiling:
            return _Rejection(Verdict.STALE_BACKLOG, "origin_older_than_ceiling")
        return None

    async def _check_conversation_outbound(
        self, state: _Classification
    ) -> _Rejection | None:
        if not state.normalized:
            return None
        ledger = self._conversation_outbound.get(state.conversation_key)
        if ledger is None:
            return None
        matched = ledger.consume(state.normalized)
        if not len(ledger):
            del self._conversation_outbound[state.conversation_key]
        if matched is not None:
            return _Rejection(Verdict.SELF_ECHO, "outbound_match_conversation")
        return None

    async def _check_content(self, state: _Classification) -> _Rejection | None:
        if not state.normalized:
            return None
        key = f"{state.conversation_key}\x00{state.normalized}"
        if not self._seen_content.add_if_absent(key):
            return _Rejection(Verdict.DUPLICATE_DELIVERY, "content_seen")
        return None
