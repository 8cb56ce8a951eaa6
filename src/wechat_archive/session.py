"""Archive session: key validation, the cached shard index, and the query API.

State machine::

    UNINITIALIZED -> VALIDATING -> READY -> CLOSED
                          |
                          +-> FAILED

Queries are only served in READY; in any other state they return empty
results instead of raising. A FAILED session may be initialised again with a
different key.
"""

from __future__ import annotations

import threading
from enum import Enum
from types import ModuleType, TracebackType

import structlog

from .cipher import CipherConnector
from .config import Settings, get_settings
from .contacts import ContactDirectory, ContactRecord, GroupMember, reconcile_contacts
from .enrich import EnrichedMessage, MessageEnricher
from .errors import ArchiveError
from .keys import mask_key, normalize_key
from .messages import Message, query_messages
from .profile import Profile, resolve_profile
from .search import search_keyword as _search_keyword
from .shards import ConversationTable, ShardIndex, build_index

_logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    VALIDATING = "validating"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class ArchiveSession:
    """One operator session over one archive."""

    def __init__(self, settings: Settings | None = None, *, driver: ModuleType | None = None) -> None:
        self.settings = settings or get_settings()
        self._driver = driver
        self._state = SessionState.UNINITIALIZED
        self._lock = threading.Lock()
        self._connector: CipherConnector | None = None
        self._profile: Profile | None = None
        self._index: ShardIndex | None = None
        self._directory: ContactDirectory | None = None
        self._member_cache: dict[str, GroupMember | None] = {}
        self.last_error: ArchiveError | None = None

    def __enter__(self) -> "ArchiveSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def profile(self) -> Profile | None:
        return self._profile

    @property
    def index(self) -> ShardIndex | None:
        return self._index

    def init_session(self, raw_key: str) -> bool:
        """Validate the key against the archive and build the shard index.

        Returns False when the archive is missing or no profile decrypts with the key.
        """
        with self._lock:
            if self._state not in (SessionState.UNINITIALIZED, SessionState.FAILED):
                _logger.warning("session.init_rejected", state=self._state.value)
                return False
            self._state = SessionState.VALIDATING
            key = normalize_key(raw_key)
            connector = CipherConnector(key, driver=self._driver)
            _logger.info("session.validating", key=mask_key(key), root=str(self.settings.archive.root_path))
            try:
                profile = resolve_profile(self.settings.archive.root_path, connector)
            except ArchiveError as exc:
                self.last_error = exc
                self._state = SessionState.FAILED
                _logger.error("session.init_failed", error=str(exc))
                return False

            self._connector = connector
            self._profile = profile
            self._index = build_index(profile, connector)
            self._member_cache = {}
            self._directory = ContactDirectory(
                profile,
                connector,
                self._member_cache,
                settings=self.settings.archive,
            )
            self.last_error = None
            self._state = SessionState.READY
            _logger.info("session.ready", profile_id=profile.profile_id, tables=len(self._index))
            return True

    def close(self) -> None:
        """Drop the key and cached state. Safe to call repeatedly."""
        with self._lock:
            if self._state is SessionState.CLOSED:
                return
            self._connector = None
            self._profile = None
            self._directory = None
            self._index = None
            self._member_cache = {}
            self._state = SessionState.CLOSED

    def conversation_tables(self) -> list[ConversationTable]:
        if not self.ready or self._index is None:
            return []
        return list(self._index)

    def list_contacts(self, nickname_filter: str | None = None) -> list[ContactRecord]:
        """Direct contacts, groups and unresolved conversations, merged.

        The filter is a case-sensitive substring match on display names and is
        applied after reconciliation, so filtered-out contacts never reappear as
        unknown conversations.
        """
        if not self.ready or self._directory is None or self._index is None:
            return []
        contacts = reconcile_contacts(
            self._directory.list_direct_contacts(),
            self._index,
            self._directory.list_groups(),
        )
        if nickname_filter:
            contacts = [contact for contact in contacts if nickname_filter in contact.display_name]
        return contacts

    def list_messages(self, digest: str, start: int | None = None, end: int | None = None) -> list[Message]:
        if not self.ready or self._index is None or self._connector is None:
            return []
        return query_messages(
            self._index,
            self._connector,
            digest,
            start,
            end,
            self_flag=self.settings.archive.self_sender_flag,
        )

    def list_enriched_messages(
        self, digest: str, start: int | None = None, end: int | None = None
    ) -> list[EnrichedMessage]:
        if not self.ready:
            return []
        enricher = MessageEnricher(self.lookup_group_member, sender_prefix=self.settings.archive.group_sender_prefix)
        return enricher.enrich_all(self.list_messages(digest, start, end))

    def search_keyword(self, keyword: str) -> str | None:
        """Name of the first conversation table containing ``keyword``, if any."""
        if not self.ready or self._profile is None or self._connector is None:
            return None
        hit = _search_keyword(self._profile, self._connector, keyword, index=self._index)
        return hit.table if hit is not None else None

    def group_member_names(self) -> dict[str, str]:
        """Every known group member identifier mapped to its nickname."""
        if not self.ready or self._directory is None:
            return {}
        return self._directory.list_group_member_names()

    def lookup_group_member(self, identifier: str) -> GroupMember | None:
        if not self.ready or self._directory is None:
            return None
        return self._directory.lookup_member(identifier)
