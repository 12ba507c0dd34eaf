"""
Deterministic item keys.

Every replica must derive the same key for the same bookmark, so the key
is a pure function of content:

- leaves: normalized URL
- containers: ``parentTitle|title``

Hashing uses 64-bit FNV-1a over the UTF-8 bytes, rendered in base36 and
prefixed with a type tag so a leaf key can never equal a container key.
Changing the normalization rules changes every key and breaks agreement
between replicas that run different versions.
"""

from __future__ import annotations

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

LEAF_PREFIX = "b_"
CONTAINER_PREFIX = "f_"

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def fnv1a_64(data: bytes) -> int:
    """64-bit FNV-1a hash."""
    value = FNV_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * FNV_PRIME) & _MASK_64
    return value


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def normalize_url(url: str) -> str:
    """Trim whitespace and strip a single trailing slash. Case is preserved."""
    url = url.strip()
    if url.endswith("/"):
        url = url[:-1]
    return url


def item_key(
    url: str | None,
    title: str,
    parent_title: str | None = None,
) -> str:
    """
    Derive the key for an item.

    Args:
        url: Leaf URL, or None for containers
        title: Display title
        parent_title: Title of the enclosing container (None = top-level)

    Returns:
        Tagged base36 hash, e.g. ``b_3k9x...`` or ``f_1z0q...``
    """
    if url:
        digest = fnv1a_64(normalize_url(url).encode("utf-8"))
        return LEAF_PREFIX + to_base36(digest)

    source = f"{parent_title or ''}|{title}"
    return CONTAINER_PREFIX + to_base36(fnv1a_64(source.encode("utf-8")))

