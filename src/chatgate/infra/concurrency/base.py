"""Concurrency primitives: exception taxonomy.

Admission rejections (duplicates, echoes, backlog) are *not* exceptions:
they resolve to an ``AdmissionDecision``.  Everything here either stays
inside the rate window / scheduler machinery or reaches the original
submitter as the rejected result of ``RequestScheduler.submit``.
"""

from __future__ import annotations


class ChatGateError(Exception):
    """Base class for every error raised by chatgate."""


# ---------------------------------------------------------------------------
# Rate window
# ---------------------------------------------------------------------------


class RateLimitExceeded(ChatGateError):
    """A reservation does not fit the window yet.

    Internal to ``RateWindow.reserve``: it is caught there and turned into
    a wait of ``wait_seconds`` before the next attempt.
    """

    def __init__(self, wait_seconds: float, *, dimension: str) -> None:
        super().__init__(
            f"Rate window full on {dimension}; retry in {wait_seconds:.3f}s"
        )
        self.wait_seconds = wait_seconds
        self.dimension = dimension


# ---------------------------------------------------------------------------
# Provider failures
# ---------------------------------------------------------------------------


class ProviderFailure(ChatGateError):
    """Base class for failures surfaced to a scheduler submitter."""


class ProviderTransientFailure(ProviderFailure):
    """Raised by a task when the provider throttled it.

    ``retry_after`` carries the provider's advertised delay in seconds,
    when it sent one.
    """

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderTerminalFailure(ProviderFailure):
    """A failure that is not worth retrying.

    The scheduler wraps non-retryable task errors in this type; the
    original exception is available as ``__cause__``.
    """


class RetriesExhausted(ProviderFailure):
    """A retryable failure persisted through every allowed retry."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class SchedulerClosed(ChatGateError):
    """The scheduler shut down before the submission could run."""
