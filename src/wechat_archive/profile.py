"""Active profile discovery: find the user directory the operator key decrypts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from .cipher import CipherConnector
from .errors import ArchiveRootNotFoundError, KeystoreMissingError, NoValidUserError

_logger = structlog.get_logger(__name__)

KEYSTORE_DIRNAME = "KeyValue"
KEYSTORE_FILENAME = "KeyValue.db"


@dataclass(slots=True, frozen=True)
class Profile:
    """The validated active user and its storage root inside the archive."""

    profile_id: str
    archive_root: Path

    @property
    def root(self) -> Path:
        return self.archive_root / self.profile_id

    @property
    def keystore_path(self) -> Path:
        return self.archive_root / KEYSTORE_DIRNAME / self.profile_id / KEYSTORE_FILENAME

    @property
    def message_dir(self) -> Path:
        return self.root / "Message"

    def shard_path(self, index: int) -> Path:
        return self.message_dir / f"msg_{index}.db"

    @property
    def contact_db(self) -> Path:
        return self.root / "Contact" / "wccontact_new2.db"

    @property
    def group_db(self) -> Path:
        return self.root / "Group" / "group_new.db"


def candidate_profiles(archive_root: Path) -> list[str]:
    """Return non-hidden profile identifiers under the keystore directory, sorted."""
    keystore_dir = archive_root / KEYSTORE_DIRNAME
    if not keystore_dir.is_dir():
        raise KeystoreMissingError(f"Keystore directory not found at {keystore_dir}")
    return sorted(entry.name for entry in keystore_dir.iterdir() if not entry.name.startswith("."))


def resolve_profile(archive_root: Path, connector: CipherConnector) -> Profile:
    """Return the first profile whose keystore decrypts with the connector's key.

    Raises
    ------
    ArchiveRootNotFoundError
        The archive root does not exist.
    KeystoreMissingError
        The archive root has no ``KeyValue`` directory.
    NoValidUserError
        No candidate keystore decrypts.
    """
    archive_root = Path(archive_root).expanduser()
    if not archive_root.is_dir():
        raise ArchiveRootNotFoundError(f"Archive directory not found at {archive_root}")

    candidates = candidate_profiles(archive_root)
    for profile_id in candidates:
        profile = Profile(profile_id=profile_id, archive_root=archive_root)
        if not profile.keystore_path.is_file():
            continue
        if connector.probe(profile.keystore_path):
            _logger.info("profile.resolved", profile_id=profile_id)
            return profile

    raise NoValidUserError(
        f"No profile under {archive_root} decrypts with the supplied key "
        f"({len(candidates)} candidate(s) tried)"
    )
