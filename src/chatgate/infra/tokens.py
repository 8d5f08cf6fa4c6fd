"""Lightweight token estimation for rate-window reservations.

Uses a conservative chars-per-token ratio so that estimates err on the
side of *over*-counting: a reservation sized from these numbers never
under-throttles waiting callers, and ``Permit.complete`` corrects the
window to the provider's real usage afterwards.
"""

CHARS_PER_TOKEN = 3
"""Conservative ratio (~3.5-4 for English, ~1.5-2 for CJK)."""


def estimate_tokens(text: str) -> int:
    """Return an estimated token count for *text*."""
    return max(1, len(text) // CHARS_PER_TOKEN)


def estimate_prompt_tokens(parts: list[str]) -> int:
    """Return the estimated token count of a prompt made of *parts*."""
    return sum(estimate_tokens(part) for part in parts if part)
