"""Operator key normalisation."""

from __future__ import annotations

import re

_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")


def normalize_key(raw: str) -> str:
    """Strip surrounding whitespace and an optional leading ``0x``/``0X`` marker.

    Any string is a syntactically valid candidate; only a successful decrypt
    downstream tells whether it is the right one.
    """
    key = (raw or "").strip()
    if key[:2].lower() == "0x":
        key = key[2:]
    return key.strip()


def is_hex_key(key: str) -> bool:
    """Whether the key can be supplied to the cipher layer as a raw hex blob."""
    return bool(key) and _HEX_RE.fullmatch(key) is not None


def mask_key(key: str) -> str:
    """Log-safe rendering of key material."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}...{key[-2:]}"
