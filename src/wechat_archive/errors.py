"""Exception hierarchy for archive access."""

from __future__ import annotations

from pathlib import Path


class ArchiveError(RuntimeError):
    """Base class for archive access failures."""


class ArchiveRootNotFoundError(ArchiveError):
    """Raised when the archive root directory does not exist."""


class KeystoreMissingError(ArchiveError):
    """Raised when the archive root has no keystore directory to validate keys against."""


class NoValidUserError(ArchiveError):
    """Raised when no candidate profile decrypts with the supplied key."""


class CipherOpenError(ArchiveError):
    """Raised when an encrypted store cannot be opened and verified.

    A wrong key, stale cipher parameters and a file of another format all look
    the same from outside; ``hint`` carries the diagnostic guess.
    """

    def __init__(self, path: Path, reason: str, hint: str | None = None) -> None:
        self.path = path
        self.reason = reason
        self.hint = hint
        message = f"Cannot open encrypted store {path}: {reason}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)
