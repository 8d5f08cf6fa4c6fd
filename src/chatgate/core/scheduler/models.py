"""Scheduler data types: size estimates, queue items, usage extraction."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from chatgate.infra.tokens import estimate_prompt_tokens

Task = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class SizeEstimate:
    """Tokens a call is expected to consume, reserved up front."""

    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def from_text(
        cls, prompt: str | Iterable[str], *, max_output_tokens: int = 0
    ) -> SizeEstimate:
        """Estimate from prompt text; output is bounded by the request's max tokens."""
        parts = [prompt] if isinstance(prompt, str) else list(prompt)
        return cls(
            input_tokens=estimate_prompt_tokens(parts),
            output_tokens=max(0, max_output_tokens),
        )


@dataclass(order=True)
class QueueItem:
    """One pending provider call.

    Ordering is ``(priority, enqueued_at, seq)``: lower priority numbers
    first, then arrival order.  A retried item keeps its original
    ``enqueued_at`` and ``seq``.
    """

    priority: int
    enqueued_at: float
    seq: int
    request_id: str = field(compare=False)
    task: Task = field(compare=False)
    future: asyncio.Future = field(compare=False, repr=False)
    estimate: SizeEstimate = field(compare=False, default_factory=SizeEstimate)
    retry_count: int = field(compare=False, default=0)
    description: str = field(compare=False, default="")
    tags: tuple[str, ...] = field(compare=False, default=())
    conversation_key: str | None = field(compare=False, default=None)
    retryable: bool = field(compare=False, default=True)
    ready_at: float = field(compare=False, default=0.0)


@dataclass(frozen=True)
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None


_INPUT_KEYS = ("input_tokens", "prompt_tokens")
_OUTPUT_KEYS = ("output_tokens", "completion_tokens")


def _pick(source: Any, keys: tuple[str, ...]) -> int | None:
    for key in keys:
        if isinstance(source, Mapping):
            value = source.get(key)
        else:
            value = getattr(source, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def extract_usage(result: Any) -> Usage | None:
    """Pull provider-reported token usage out of a task result.

    Understands Anthropic-style (``input_tokens`` / ``output_tokens``)
    and OpenAI-style (``prompt_tokens`` / ``completion_tokens``) usage
    blocks, found either as a ``usage`` attribute or a ``"usage"`` key.
    """
    if result is None:
        return None
    if isinstance(result, Mapping):
        usage = result.get("usage")
    else:
        usage = getattr(result, "usage", None)
    if usage is None:
        return None
    found = Usage(
        input_tokens=_pick(usage, _INPUT_KEYS),
        output_tokens=_pick(usage, _OUTPUT_KEYS),
    )
    if found.input_tokens is None and found.output_tokens is None:
        return None
    return found
