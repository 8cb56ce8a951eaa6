"""Message shard discovery and the conversation-table index.

Conversation tables are named ``Chat_<md5(identifier)>`` and spread over up to
ten numbered shard files. The index is built once per session by opening each
present shard and cataloguing its conversation tables.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from .cipher import CipherConnector
from .errors import CipherOpenError
from .profile import Profile
from .utils import normalize_digest

_logger = structlog.get_logger(__name__)

# The writer allocates shards msg_0..msg_9 and never more; the bound is fixed,
# not discovered from the directory listing. Most archives only have some of them.
SHARD_COUNT = 10

CHAT_TABLE_PREFIX = "Chat_"
_CHAT_TABLE_RE = re.compile(r"^Chat_[0-9a-f]{32}$")
_CHAT_TABLES_SQL = (
    "SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE 'Chat\\_%' ESCAPE '\\'"
)


@dataclass(slots=True, frozen=True)
class ShardRef:
    index: int
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def exists(self) -> bool:
        return self.path.is_file()


@dataclass(slots=True, frozen=True)
class ConversationTable:
    name: str
    shard: ShardRef

    @property
    def digest(self) -> str:
        return self.name[len(CHAT_TABLE_PREFIX):]


def table_name_for(digest: str) -> str:
    return f"{CHAT_TABLE_PREFIX}{digest}"


def is_conversation_table(name: str) -> bool:
    return _CHAT_TABLE_RE.fullmatch(name) is not None


def iter_shards(profile: Profile) -> Iterator[ShardRef]:
    """Yield every possible shard in ascending index order, present or not."""
    for index in range(SHARD_COUNT):
        yield ShardRef(index=index, path=profile.shard_path(index))


def list_conversation_tables(conn: Any) -> list[str]:
    """Return conversation table names in the store's catalogue order."""
    names: list[str] = []
    for row in conn.execute(_CHAT_TABLES_SQL).fetchall():
        name = row[0]
        if is_conversation_table(name):
            names.append(name)
        else:
            _logger.debug("shards.table_ignored", table=name)
    return names


@dataclass(slots=True)
class ShardIndex:
    """Flat, ordered catalogue of conversation tables across all shards."""

    tables: tuple[ConversationTable, ...] = ()
    failed: tuple[ShardRef, ...] = ()
    _by_digest: dict[str, ConversationTable] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for table in self.tables:
            # First occurrence wins if a digest is ever duplicated across shards.
            self._by_digest.setdefault(table.digest, table)

    def __len__(self) -> int:
        return len(self.tables)

    def __iter__(self) -> Iterator[ConversationTable]:
        return iter(self.tables)

    def find(self, digest: str) -> ConversationTable | None:
        normalized = normalize_digest(digest)
        if normalized is None:
            return None
        return self._by_digest.get(normalized)

    def by_shard(self) -> dict[ShardRef, list[ConversationTable]]:
        grouped: dict[ShardRef, list[ConversationTable]] = {}
        for table in self.tables:
            grouped.setdefault(table.shard, []).append(table)
        return grouped


def build_index(profile: Profile, connector: CipherConnector) -> ShardIndex:
    """Open each present shard once and catalogue its conversation tables.

    Missing shards are skipped silently. Shards that fail to decrypt are skipped
    with a warning and listed in ``ShardIndex.failed``; the rest of the archive
    stays usable.
    """
    tables: list[ConversationTable] = []
    failed: list[ShardRef] = []
    for shard in iter_shards(profile):
        if not shard.exists():
            continue
        try:
            with connector.open(shard.path) as conn:
                names = list_conversation_tables(conn)
        except CipherOpenError as exc:
            failed.append(shard)
            _logger.warning("shards.skipped", shard=shard.name, reason=exc.reason, hint=exc.hint)
            continue
        except connector.error_types as exc:
            failed.append(shard)
            _logger.warning("shards.catalog_failed", shard=shard.name, error=str(exc))
            continue
        tables.extend(ConversationTable(name=name, shard=shard) for name in names)
        _logger.debug("shards.indexed", shard=shard.name, tables=len(names))

    index = ShardIndex(tables=tuple(tables), failed=tuple(failed))
    _logger.info("shards.index_built", tables=len(index), failed_shards=len(index.failed))
    return index
