"""Prefixed ID generation.

Internal IDs use a ``{prefix}_{random}`` format so that any ID in a log
line can be visually identified by its origin:

- ``unit_a8Kx3nQ9mP2r``: coalesced unit of inbound work
- ``req_L7wBd4Fj9Ks2``: one scheduler submission (stable across retries)

Transport message ids and provider ids are used as-is.
"""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits  # a-z A-Z 0-9
_DEFAULT_LENGTH = 12  # ~71 bits of entropy

UNIT_PREFIX = "unit"
REQUEST_PREFIX = "req"


def generate_id(prefix: str, length: int = _DEFAULT_LENGTH) -> str:
    """Generate a prefixed random ID.

    Args:
        prefix: Short descriptor (e.g. ``"unit"``, ``"req"``).
        length: Number of random alphanumeric characters after the prefix.

    Returns:
        ``"{prefix}_{random}"`` string.
    """
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(length))
    return f"{prefix}_{suffix}"
