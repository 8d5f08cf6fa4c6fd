"""Text normalization shared by the content and echo caches."""

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """NFKC-normalize, collapse whitespace runs and case-fold *text*.

    Two messages that only differ in width forms, spacing or letter case
    normalize to the same string.  Whitespace-only input yields ``""``.
    """
    folded = unicodedata.normalize("NFKC", text).casefold()
    return _WHITESPACE_RE.sub(" ", folded).strip()
