"""Label normalization and tokenization helpers shared by canonicalization and scoring."""
from __future__ import annotations

import re
from typing import AbstractSet, Any, Iterable, List

_SEPARATOR_PATTERN = re.compile(r"[_-]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_TOKEN_PATTERN = re.compile(r"[a-z0-9]{2,}")


def normalize_label(value: str) -> str:
    """Canonicalize a label or node type string.

    The value is trimmed first, then separator runs (``_`` and ``-``) become a
    single space and whitespace runs collapse to one space. Letter case is
    preserved. Trimming happens before separator replacement, so ``"step_"``
    normalizes to ``"step "``; canonical ids depend on this exact ordering.

    Args:
        value: Raw label text.

    Returns:
        str: Normalized label, empty when the input carries no text.
    """

    cleaned = _SEPARATOR_PATTERN.sub(" ", value.strip())
    return _WHITESPACE_PATTERN.sub(" ", cleaned)


def read_text(value: Any) -> str:
    """Return a stripped string for untrusted payload values, or ``""``."""

    if not isinstance(value, str):
        return ""
    return value.strip()


def tokenize(label: str, content: str, stop_words: AbstractSet[str]) -> List[str]:
    """Extract lower-case alphanumeric tokens from a node's label and content.

    Args:
        label: Node label.
        content: Node body text.
        stop_words: Words dropped from the output.

    Returns:
        List[str]: Tokens of at least two characters in order of appearance.
    """

    combined = f"{label} {content}".lower()
    return [token for token in _TOKEN_PATTERN.findall(combined) if token not in stop_words]


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    """Return the Jaccard similarity of two token collections treated as sets."""

    left_set = set(left)
    right_set = set(right)
    if not left_set or not right_set:
        return 0.0
    intersection = len(left_set & right_set)
    union = len(left_set | right_set)
    if union == 0:
        return 0.0
    return clamp01(intersection / union)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def percent(value: float) -> str:
    """Format a ratio as a whole percentage, rounding halves up."""

    return f"{int(clamp01(value) * 100 + 0.5)}%"


__all__ = [
    "normalize_label",
    "read_text",
    "tokenize",
    "jaccard_similarity",
    "clamp01",
    "percent",
]
