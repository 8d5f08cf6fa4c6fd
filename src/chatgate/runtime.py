"""Wiring: build every component from ``AppConfig`` and tear them down.

Usage::

    async def on_unit(gate: ChatGate, unit: WorkUnit) -> None:
        try:
            reply = await gate.scheduler.submit(
                lambda: call_provider(unit.text),
                estimate=SizeEstimate.from_text(unit.text, max_output_tokens=1024),
                conversation_key=unit.conversation_key,
            )
        except ProviderFailure:
            reply = FALLBACK_REPLY
        await gate.deliver(unit.conversation_key, reply)

    bootstrap_observability(config)
    async with build_chat_gate(config, handler=on_unit, sender=bridge.send) as gate:
        async for event in bridge.events():
            await gate.handle(event)

Shutdown runs in reverse build order: the coalescer drains first (its
in-flight handlers may still submit work), then the scheduler, then any
typing indicators still showing are switched off.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

from chatgate.configs.config import AppConfig, get_app_config
from chatgate.core.admission import (
    AdmissionDecision,
    AdmissionPipeline,
    DebounceCoalescer,
    EchoSuppressor,
    InboundMessageEvent,
    ResponseRateLimiter,
    WorkUnit,
)
from chatgate.core.admission.suppressor import ConversationResolver
from chatgate.core.outbound import OutboundDispatcher, Sender
from chatgate.core.scheduler import OperatorAlerter, RequestScheduler, RetryClassifier
from chatgate.core.signals import ActivityIndicator, SignalBus, TypingToggle
from chatgate.infra.concurrency.rate_window import RateWindow
from chatgate.infra.logging import setup_logging
from chatgate.infra.telemetry import init_telemetry

logger = logging.getLogger(__name__)

WorkHandler = Callable[["ChatGate", WorkUnit], Awaitable[None]]


@dataclass
class ChatGate:
    """Handle on a fully wired admission pipeline and scheduler."""

    config: AppConfig
    suppressor: EchoSuppressor
    coalescer: DebounceCoalescer
    pipeline: AdmissionPipeline
    rate_window: RateWindow
    scheduler: RequestScheduler
    signals: SignalBus
    response_limiter: ResponseRateLimiter
    outbound: OutboundDispatcher
    activity: ActivityIndicator | None = None

    async def handle(self, event: InboundMessageEvent) -> AdmissionDecision:
        return await self.pipeline.handle(event)

    async def deliver(self, conversation_key: str, text: str) -> bool:
        return await self.outbound.deliver(conversation_key, text)


class _GateHandler:
    """Coalescer callback that passes the finished ``ChatGate`` to *handler*."""

    def __init__(self, handler: WorkHandler) -> None:
        self._handler = handler
        self.gate: ChatGate | None = None

    async def __call__(self, unit: WorkUnit) -> None:
        if self.gate is None:
            raise RuntimeError("Work unit dispatched before the chat gate was built")
        await self._handler(self.gate, unit)


def bootstrap_observability(config: AppConfig) -> None:
    """Configure logging and tracing for the embedding process (call once)."""
    setup_logging(config.logging)
    init_telemetry(config.tracing)


@asynccontextmanager
async def build_chat_gate(
    config: AppConfig | None = None,
    *,
    handler: WorkHandler,
    sender: Sender,
    typing_toggle: TypingToggle | None = None,
    resolver: ConversationResolver | None = None,
    alerter: OperatorAlerter | None = None,
    retry_classifier: RetryClassifier | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncGenerator[ChatGate, None]:
    """Build a ``ChatGate``; everything is closed when the block exits."""
    if config is None:
        config = get_app_config()

    on_unit = _GateHandler(handler)

    async with AsyncExitStack() as stack:
        signals = SignalBus()
        activity = None
        if typing_toggle is not None:
            activity = ActivityIndicator.from_config(config.typing, typing_toggle)
            signals.subscribe(activity)
            stack.push_async_callback(activity.stop_all)

        rate_window = RateWindow.from_config(config.provider, clock=clock, sleep=sleep)

        scheduler_kwargs: dict[str, Any] = {"signaler": signals, "alerter": alerter}
        if retry_classifier is not None:
            scheduler_kwargs["retry_classifier"] = retry_classifier
        scheduler = RequestScheduler.from_config(
            config.scheduler, rate_window, clock=clock, sleep=sleep, **scheduler_kwargs
        )
        stack.push_async_callback(scheduler.aclose)

        suppressor_kwargs: dict[str, Any] = {}
        if resolver is not None:
            suppressor_kwargs["resolver"] = resolver
        suppressor = EchoSuppressor(config.suppression, clock=clock, **suppressor_kwargs)

        coalescer = DebounceCoalescer(config.debounce.quiet_period, on_unit)
        stack.push_async_callback(coalescer.aclose)

        response_limiter = ResponseRateLimiter.from_config(
            config.response_limit, clock=clock
        )

        gate = ChatGate(
            config=config,
            suppressor=suppressor,
            coalescer=coalescer,
            pipeline=AdmissionPipeline(suppressor, coalescer),
            rate_window=rate_window,
            scheduler=scheduler,
            signals=signals,
            response_limiter=response_limiter,
            outbound=OutboundDispatcher(sender, suppressor, response_limiter),
            activity=activity,
        )
        on_unit.gate = gate
        logger.info(
            "chatgate ready (concurrency=%d, rpm=%d, debounce=%.2fs)",
            config.scheduler.max_concurrency,
            config.provider.requests_per_minute,
            config.debounce.quiet_period.total_seconds(),
        )
        yield gate
        logger.info("chatgate shutting down")
