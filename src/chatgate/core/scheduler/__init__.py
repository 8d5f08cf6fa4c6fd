"""Outbound request scheduling: priority, concurrency, quota and retry."""

from .alerts import LoggingAlerter, OperatorAlerter
from .models import QueueItem, SizeEstimate, Usage, extract_usage
from .retry import (
    RetryClassifier,
    RetryHint,
    backoff_delay,
    default_retry_classifier,
    openai_retry_hint,
    parse_retry_after,
)
from .scheduler import RequestScheduler

__all__ = [
    "LoggingAlerter",
    "OperatorAlerter",
    "QueueItem",
    "RequestScheduler",
    "RetryClassifier",
    "RetryHint",
    "SizeEstimate",
    "Usage",
    "backoff_delay",
    "default_retry_classifier",
    "extract_usage",
    "openai_retry_hint",
    "parse_retry_after",
]
