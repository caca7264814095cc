"""Deterministic fingerprints binding canonical nodes to their (type, label) pair."""
from __future__ import annotations

from .text import normalize_label

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
CANONICAL_ID_PREFIX = "canon_"

_UINT32_MASK = 0xFFFFFFFF
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _utf16_code_units(value: str) -> list[int]:
    encoded = value.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(encoded[index : index + 2], "little") for index in range(0, len(encoded), 2)]


def fnv1a_32(value: str) -> int:
    """Hash a string with 32-bit FNV-1a over its UTF-16 code units.

    Code units rather than code points are hashed so that identifiers match
    those minted by clients that index strings in UTF-16.

    Args:
        value: String to hash.

    Returns:
        int: Unsigned 32-bit hash value.
    """

    hashed = FNV_OFFSET_BASIS
    for unit in _utf16_code_units(value):
        hashed ^= unit
        hashed = (hashed * FNV_PRIME) & _UINT32_MASK
    return hashed


def to_base36(value: int) -> str:
    """Encode a non-negative integer using lower-case base-36 digits."""

    if value < 0:
        msg = "base36 encoding requires a non-negative integer"
        raise ValueError(msg)
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def fingerprint_key(node_type: str, label: str) -> str:
    """Return the canonicalization key for a node type and label."""

    return f"{normalize_label(node_type)}|{normalize_label(label)}"


def canonical_id_from_key(key: str) -> str:
    return f"{CANONICAL_ID_PREFIX}{to_base36(fnv1a_32(key))}"


def canonical_node_id(node_type: str, label: str) -> str:
    """Mint the stable canonical node identifier for a (type, label) pair.

    Args:
        node_type: Flow node type, normalized before hashing.
        label: Flow node label, normalized before hashing.

    Returns:
        str: Identifier of the form ``canon_<base36 hash>``.
    """

    return canonical_id_from_key(fingerprint_key(node_type, label))


__all__ = [
    "FNV_OFFSET_BASIS",
    "FNV_PRIME",
    "CANONICAL_ID_PREFIX",
    "fnv1a_32",
    "to_base36",
    "fingerprint_key",
    "canonical_id_from_key",
    "canonical_node_id",
]
