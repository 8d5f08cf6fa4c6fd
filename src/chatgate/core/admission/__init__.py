"""Inbound admission: suppression, debounce and the response breaker."""

from .debounce import DebounceCoalescer, merge_events
from .models import AdmissionDecision, InboundMessageEvent, Verdict, WorkUnit
from .normalize import normalize_text
from .pipeline import AdmissionPipeline
from .response_limiter import ResponseRateLimiter
from .suppressor import EchoSuppressor, resolve_transport_key

__all__ = [
    "AdmissionDecision",
    "AdmissionPipeline",
    "DebounceCoalescer",
    "EchoSuppressor",
    "InboundMessageEvent",
    "ResponseRateLimiter",
    "Verdict",
    "WorkUnit",
    "merge_events",
    "normalize_text",
    "resolve_transport_key",
]
