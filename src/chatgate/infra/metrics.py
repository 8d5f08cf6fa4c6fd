"""Prometheus metrics for chatgate.

All metrics use the ``chatgate_`` prefix and live on the default
``prometheus_client`` registry, so an embedding application exposes them
by mounting its usual ``/metrics`` endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Admission metrics
# ---------------------------------------------------------------------------

ADMISSION_DECISIONS_TOTAL = Counter(
    "chatgate_admission_decisions_total",
    "Inbound events classified by the suppressor, by verdict",
    ["verdict"],  # admit | duplicate_delivery | self_echo | stale_backlog | startup_grace
)

OUTBOUND_FINGERPRINTS_TOTAL = Counter(
    "chatgate_outbound_fingerprints_total",
    "Outbound messages recorded for echo suppression",
)

# ---------------------------------------------------------------------------
# Debounce metrics
# ---------------------------------------------------------------------------

DEBOUNCE_FLUSHES_TOTAL = Counter(
    "chatgate_debounce_flushes_total",
    "Work units handed downstream by the debounce coalescer",
    ["trigger"],  # timer | manual
)

DEBOUNCE_MESSAGES_PER_UNIT = Histogram(
    "chatgate_debounce_messages_per_unit",
    "Inbound messages merged into one work unit",
    buckets=(1, 2, 3, 5, 10, 20),
)

DEBOUNCE_PENDING_CONVERSATIONS = Gauge(
    "chatgate_debounce_pending_conversations",
    "Conversations with a buffered, not yet flushed burst",
)

# ---------------------------------------------------------------------------
# Rate window metrics
# ---------------------------------------------------------------------------

RATE_WINDOW_WAIT_SECONDS = Histogram(
    "chatgate_rate_window_wait_seconds",
    "Time a reservation spent waiting for quota",
    buckets=(0, 0.1, 0.5, 1, 5, 10, 30, 60, 120),
)

RATE_WINDOW_RESERVATIONS_TOTAL = Counter(
    "chatgate_rate_window_reservations_total",
    "Reservations granted by the rate window",
    ["waited"],  # "yes" | "no"
)

# ---------------------------------------------------------------------------
# Scheduler metrics
# ---------------------------------------------------------------------------

SCHEDULER_QUEUE_DEPTH = Gauge(
    "chatgate_scheduler_queue_depth",
    "Provider calls waiting for an execution slot",
)

SCHEDULER_IN_FLIGHT = Gauge(
    "chatgate_scheduler_in_flight",
    "Provider calls currently executing",
)

SCHEDULER_ATTEMPTS_TOTAL = Counter(
    "chatgate_scheduler_attempts_total",
    "Execution attempts, by outcome",
    ["outcome"],  # ok | retry | terminal | exhausted
)

SCHEDULER_ATTEMPT_SECONDS = Histogram(
    "chatgate_scheduler_attempt_seconds",
    "Duration of one execution attempt including the permit wait",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

SCHEDULER_SLOT_WAIT_SECONDS = Histogram(
    "chatgate_scheduler_slot_wait_seconds",
    "Time an item spent queued before a slot picked it up",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60),
)

# ---------------------------------------------------------------------------
# Outbound metrics
# ---------------------------------------------------------------------------

RESPONSE_LIMIT_REFUSALS_TOTAL = Counter(
    "chatgate_response_limit_refusals_total",
    "Responses suppressed by the per-conversation circuit breaker",
)

TYPING_SESSIONS_ACTIVE = Gauge(
    "chatgate_typing_sessions_active",
    "Conversations currently showing a typing indicator",
)
