"""Utility helpers for the WeChat archive reader."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Any

_DIGEST_RE = re.compile(r"^[0-9a-f]{32}$")

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def md5_digest(identifier: str) -> str:
    """Return the lowercase-hex MD5 of an identifier (the storage-level conversation key)."""
    return hashlib.md5(identifier.encode("utf-8")).hexdigest()


def normalize_digest(value: str) -> str | None:
    """Lowercase and validate a digest; return None if it is not 32 hex characters."""
    candidate = (value or "").strip().lower()
    if _DIGEST_RE.fullmatch(candidate) is None:
        return None
    return candidate


def coerce_int(value: Any, *, default: int = 0) -> int:
    """Convert archive column values (int, float, numeric text) to int."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def format_timestamp(seconds: int) -> str:
    """Render unix seconds in local time."""
    try:
        return datetime.fromtimestamp(seconds).strftime(DATETIME_FORMAT)
    except (OverflowError, OSError, ValueError):
        return str(seconds)


def escape_like(value: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(escape, escape * 2)
        .replace("%", f"{escape}%")
        .replace("_", f"{escape}_")
    )
