"""OutboundDispatcher: the only way replies leave the process.

Every reply passes the per-conversation response breaker and is
fingerprinted for echo suppression before it reaches the transport, so
the transport bouncing it back a moment later is recognised as our own.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from chatgate.core.admission.response_limiter import ResponseRateLimiter
from chatgate.core.admission.suppressor import EchoSuppressor
from chatgate.infra.telemetry import (
    ATTR_OUTBOUND_ALLOWED,
    SPAN_OUTBOUND_DELIVER,
    tracer,
)

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], Awaitable[None]]

FALLBACK_REPLY = (
    "I'm having trouble processing your message right now. Please try again later."
)


class OutboundDispatcher:
    def __init__(
        self,
        sender: Sender,
        suppressor: EchoSuppressor,
        limiter: ResponseRateLimiter,
    ) -> None:
        self._send = sender
        self._suppressor = suppressor
        self._limiter = limiter

    async def deliver(self, conversation_key: str, text: str) -> bool:
        """Send *text* unless the breaker is open.  Returns whether it was sent.

        Sender errors propagate; the fingerprint stays recorded either way.
        """
        with tracer.start_as_current_span(SPAN_OUTBOUND_DELIVER) as span:
            allowed = self._limiter.allow(conversation_key)
            span.set_attribute(ATTR_OUTBOUND_ALLOWED, allowed)
            if not allowed:
                logger.warning("Suppressed reply to %s (response limit)", conversation_key)
                return False

            # Recorded first: the echo can arrive before send() returns.
            self._suppressor.record_outbound(conversation_key, text)
            await self._send(conversation_key, text)
            logger.debug("Delivered reply to %s (%d chars)", conversation_key, len(text))
            return True
