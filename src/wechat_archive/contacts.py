"""Contact and group resolution from the dedicated contact and group stores."""

from __future__ import annotations

import threading
from collections.abc import Iterable, MutableMapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from .cipher import CipherConnector
from .config import ArchiveSettings
from .errors import CipherOpenError
from .profile import Profile
from .shards import ConversationTable
from .utils import md5_digest

_logger = structlog.get_logger(__name__)

_DIRECT_CONTACTS_SQL = "SELECT m_nsUsrName, nickname FROM WCContact"
_GROUPS_SQL = "SELECT m_nsUsrName, nickname FROM GroupContact"
_GROUP_MEMBERS_SQL = "SELECT m_nsUsrName, nickname FROM GroupMember"
_GROUP_MEMBER_SQL = "SELECT m_nsUsrName, nickname, m_nsHeadImgUrl FROM GroupMember WHERE m_nsUsrName = ?"


class ContactKind(str, Enum):
    USER = "user"
    GROUP = "group"


@dataclass(slots=True, frozen=True)
class ContactRecord:
    identifier: str
    display_name: str
    kind: ContactKind
    digest: str

    @classmethod
    def from_identifier(cls, identifier: str, display_name: str, kind: ContactKind) -> "ContactRecord":
        return cls(identifier=identifier, display_name=display_name, kind=kind, digest=md5_digest(identifier))

    def to_dict(self) -> dict[str, str]:
        return {
            "identifier": self.identifier,
            "display_name": self.display_name,
            "kind": self.kind.value,
            "digest": self.digest,
        }


@dataclass(slots=True, frozen=True)
class GroupMember:
    identifier: str
    display_name: str
    avatar_url: str

    def to_dict(self) -> dict[str, str]:
        return {"identifier": self.identifier, "display_name": self.display_name, "avatar_url": self.avatar_url}


class ContactDirectory:
    """Read-only view over the direct-contact and group stores of one profile.

    ``member_cache`` is owned by the session; it only grows and records
    confirmed misses as ``None`` so a member is looked up in the store at most once.
    """

    def __init__(
        self,
        profile: Profile,
        connector: CipherConnector,
        member_cache: MutableMapping[str, GroupMember | None],
        *,
        settings: ArchiveSettings,
    ) -> None:
        self.profile = profile
        self.connector = connector
        self.settings = settings
        self._member_cache = member_cache
        self._member_lock = threading.Lock()

    def _fetch_all(self, path: Any, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        try:
            with self.connector.open(path) as conn:
                return conn.execute(sql, tuple(params)).fetchall()
        except CipherOpenError as exc:
            _logger.warning("contacts.store_unavailable", store=path.name, reason=exc.reason)
        except self.connector.error_types as exc:
            _logger.warning("contacts.query_failed", store=path.name, error=str(exc))
        return []

    def _is_service_account(self, identifier: str) -> bool:
        return any(identifier.startswith(prefix) for prefix in self.settings.non_user_prefixes)

    def list_direct_contacts(self, nickname_filter: str | None = None) -> list[ContactRecord]:
        """Return individual contacts, excluding service accounts.

        ``nickname_filter`` is a case-sensitive substring match on the nickname,
        evaluated in the store. Library callers use it for a direct-contacts-only
        lookup; ``ArchiveSession.list_contacts`` filters after reconciliation instead.
        """
        sql = _DIRECT_CONTACTS_SQL
        params: list[Any] = []
        if nickname_filter:
            sql += " WHERE instr(nickname, ?) > 0"
            params.append(nickname_filter)

        contacts: list[ContactRecord] = []
        for row in self._fetch_all(self.profile.contact_db, sql, params):
            identifier = row["m_nsUsrName"]
            if not identifier or self._is_service_account(identifier):
                continue
            contacts.append(
                ContactRecord.from_identifier(
                    identifier,
                    row["nickname"] or self.settings.unknown_contact_name,
                    ContactKind.USER,
                )
            )
        return contacts

    def list_groups(self) -> list[ContactRecord]:
        """Return group conversations with their own identifier and display name."""
        groups: list[ContactRecord] = []
        for row in self._fetch_all(self.profile.group_db, _GROUPS_SQL):
            identifier, nickname = row["m_nsUsrName"], row["nickname"]
            if identifier and nickname:
                groups.append(ContactRecord.from_identifier(identifier, nickname, ContactKind.GROUP))
        return groups

    def list_group_display_names(self) -> dict[str, str]:
        """Map group digest to display name.

        Library API for callers that resolve a conversation digest to its group
        title without building full contact records.
        """
        return {group.digest: group.display_name for group in self.list_groups()}

    def list_group_member_names(self) -> dict[str, str]:
        """Map every known group member identifier to its nickname."""
        names: dict[str, str] = {}
        for row in self._fetch_all(self.profile.group_db, _GROUP_MEMBERS_SQL):
            identifier, nickname = row["m_nsUsrName"], row["nickname"]
            if identifier and nickname:
                names[identifier] = nickname
        return names

    def lookup_member(self, identifier: str) -> GroupMember | None:
        """Return a group member by identifier, consulting the store at most once."""
        if identifier in self._member_cache:
            return self._member_cache[identifier]
        with self._member_lock:
            if identifier in self._member_cache:
                return self._member_cache[identifier]
            rows = self._fetch_all(self.profile.group_db, _GROUP_MEMBER_SQL, (identifier,))
            member: GroupMember | None = None
            if rows:
                row = rows[0]
                member = GroupMember(
                    identifier=row["m_nsUsrName"],
                    display_name=row["nickname"] or "",
                    avatar_url=row["m_nsHeadImgUrl"] or "",
                )
            self._member_cache[identifier] = member
            return member


def reconcile_contacts(
    direct: Iterable[ContactRecord],
    tables: Iterable[ConversationTable],
    groups: Iterable[ContactRecord],
) -> list[ContactRecord]:
    """Merge direct contacts with conversation tables that have no direct contact.

    A table whose digest matches a known group becomes that group; anything
    else is surfaced as an unknown conversation named after its table. Unknown
    conversations default to the user kind; nothing in the archive format
    guarantees that.
    """
    contacts = list(direct)
    seen = {contact.digest for contact in contacts}
    groups_by_digest = {group.digest: group for group in groups}

    for table in tables:
        digest = table.digest
        if digest in seen:
            continue
        seen.add(digest)
        group = groups_by_digest.get(digest)
        if group is not None:
            contacts.append(group)
        else:
            contacts.append(
                ContactRecord(
                    identifier=f"Unknown_{digest}",
                    display_name=table.name,
                    kind=ContactKind.USER,
                    digest=digest,
                )
            )
    return contacts
