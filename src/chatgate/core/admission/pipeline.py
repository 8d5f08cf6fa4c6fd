"""AdmissionPipeline: suppressor in front of the debounce coalescer."""

from __future__ import annotations

from .debounce import DebounceCoalescer
from .models import AdmissionDecision, InboundMessageEvent
from .suppressor import EchoSuppressor


class AdmissionPipeline:
    """Entry point for raw transport events.

    Rejected events stop at the suppressor; admitted ones are buffered
    under their *resolved* conversation key.
    """

    def __init__(self, suppressor: EchoSuppressor, coalescer: DebounceCoalescer) -> None:
        self._suppressor = suppressor
        self._coalescer = coalescer

    async def handle(self, event: InboundMessageEvent) -> AdmissionDecision:
        decision = await self._suppressor.classify(event)
        if decision.admitted:
            await self._coalescer.submit(decision.conversation_key, event)
        return decision
