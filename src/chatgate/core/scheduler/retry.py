"""Retry classification and backoff.

A *retry classifier* looks at the exception a task raised and returns a
``RetryHint`` when the failure is worth retrying, or ``None`` when it is
terminal.  The hint may carry the provider's advertised delay; without
one the scheduler falls back to exponential backoff.

Two classifiers ship here:

* ``default_retry_classifier``: ``ProviderTransientFailure`` raised by
  the task itself, then the OpenAI SDK adapter below.
* ``openai_retry_hint``: HTTP 429 errors from the ``openai`` client,
  honouring ``retry-after-ms`` / ``retry-after`` response headers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import openai

from chatgate.infra.concurrency.base import ProviderTransientFailure

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


@dataclass(frozen=True)
class RetryHint:
    """Marks a failure as retryable.

    ``delay`` is in seconds; ``None`` means "use computed backoff".
    """

    delay: float | None = None


RetryClassifier = Callable[[BaseException], "RetryHint | None"]


def backoff_delay(retry_count: int, base: float, maximum: float) -> float:
    """``base * 2 ** retry_count`` seconds, capped at *maximum*."""
    return min(base * (2**retry_count), maximum)


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Read a provider retry delay from response headers, in seconds.

    ``retry-after-ms`` wins over ``retry-after``; the latter may be a
    number of seconds or an HTTP date.
    """
    if not headers:
        return None

    retry_ms = headers.get("retry-after-ms")
    if retry_ms is not None:
        try:
            return max(0.0, float(retry_ms) / 1000)
        except ValueError:
            logger.debug("Ignoring malformed retry-after-ms header %r", retry_ms)

    retry_after = headers.get("retry-after")
    if retry_after is None:
        return None
    try:
        return max(0.0, float(retry_after))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed retry-after header %r", retry_after)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def openai_retry_hint(exc: BaseException) -> RetryHint | None:
    """Retry OpenAI SDK rate-limit errors, using the server's delay if given."""
    if not isinstance(exc, openai.APIStatusError):
        return None
    if exc.status_code != HTTP_TOO_MANY_REQUESTS:
        return None
    return RetryHint(delay=parse_retry_after(exc.response.headers))


def default_retry_classifier(exc: BaseException) -> RetryHint | None:
    if isinstance(exc, ProviderTransientFailure):
        return RetryHint(delay=exc.retry_after)
    return openai_retry_hint(exc)
