"""Top-level package for the WeChat archive reader."""

from __future__ import annotations

from typing import Any


def open_archive(raw_key: str, **kwargs: Any) -> Any:
    """Lazily import the session layer and initialise it with ``raw_key``.

    Returns the ready ``ArchiveSession`` or None when the key opens no profile.
    """
    from .session import ArchiveSession

    session = ArchiveSession(**kwargs)
    if not session.init_session(raw_key):
        return None
    return session


__all__ = ["open_archive"]
