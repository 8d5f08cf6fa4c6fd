"""Concurrency primitives for inbound admission and provider calls.

Three independent pieces:

1. **ExpiringKeySet / OutboundLedger**: time-windowed memory used by the
   echo suppressor.  Synchronous critical sections, safe to share across
   coroutines on one event loop.

2. **RateWindow** (requests, input tokens, output tokens per trailing
   minute): provider quota tracking.  ``reserve`` waits until all three
   dimensions fit; ``Permit.complete`` corrects the entry to actual usage.

3. **ExecutionSlots** (``max_concurrency`` slots): how many provider
   calls run at the same time.
"""

from .base import (
    ChatGateError,
    ProviderFailure,
    ProviderTerminalFailure,
    ProviderTransientFailure,
    RateLimitExceeded,
    RetriesExhausted,
    SchedulerClosed,
)
from .rate_window import Permit, RateWindow, WindowUsage
from .semaphore import ExecutionSlots
from .ttl_cache import ExpiringKeySet, OutboundFingerprint, OutboundLedger

__all__ = [
    "ChatGateError",
    "ExecutionSlots",
    "ExpiringKeySet",
    "OutboundFingerprint",
    "OutboundLedger",
    "Permit",
    "ProviderFailure",
    "ProviderTerminalFailure",
    "ProviderTransientFailure",
    "RateLimitExceeded",
    "RateWindow",
    "RetriesExhausted",
    "SchedulerClosed",
    "WindowUsage",
]
