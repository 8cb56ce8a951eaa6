"""Time-ranged message retrieval from the owning shard of a conversation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from .cipher import CipherConnector
from .errors import CipherOpenError
from .shards import ShardIndex
from .utils import coerce_int

_logger = structlog.get_logger(__name__)

LOCAL_ID_COLUMN = "mesLocalID"
DIRECTION_COLUMN = "mesDes"
TYPE_COLUMN = "messageType"
TIMESTAMP_COLUMN = "msgCreateTime"
CONTENT_COLUMN = "msgContent"

_REQUIRED_COLUMNS = frozenset({LOCAL_ID_COLUMN, DIRECTION_COLUMN, TYPE_COLUMN, TIMESTAMP_COLUMN, CONTENT_COLUMN})


@dataclass(slots=True, frozen=True)
class Message:
    """One stored message row.

    Columns beyond the five the reader interprets are carried untouched in ``extra``.
    """

    local_id: str
    sender_is_self: bool
    type_code: int
    timestamp: int
    content: str
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], *, self_flag: int) -> "Message":
        columns = {key: row[key] for key in row.keys()}
        local_id = columns.get(LOCAL_ID_COLUMN)
        content = columns.get(CONTENT_COLUMN)
        return cls(
            local_id="" if local_id is None else str(local_id),
            sender_is_self=coerce_int(columns.get(DIRECTION_COLUMN), default=-1) == self_flag,
            type_code=coerce_int(columns.get(TYPE_COLUMN)),
            timestamp=coerce_int(columns.get(TIMESTAMP_COLUMN)),
            content="" if content is None else str(content),
            extra=MappingProxyType({k: v for k, v in columns.items() if k not in _REQUIRED_COLUMNS}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "sender_is_self": self.sender_is_self,
            "type_code": self.type_code,
            "timestamp": self.timestamp,
            "content": self.content,
            "extra": dict(self.extra),
        }


def _build_query(table_name: str, start: int | None, end: int | None) -> tuple[str, list[int]]:
    # table_name comes from the index, which only admits Chat_<32 hex> names.
    conditions: list[str] = []
    params: list[int] = []
    if start is not None:
        conditions.append(f"{TIMESTAMP_COLUMN} >= ?")
        params.append(int(start))
    if end is not None:
        conditions.append(f"{TIMESTAMP_COLUMN} <= ?")
        params.append(int(end))
    sql = f'SELECT * FROM "{table_name}"'
    if conditions:
        sql += " WHERE " + " AND ".join(conditions)
    sql += f" ORDER BY {TIMESTAMP_COLUMN} ASC"
    return sql, params


def query_messages(
    index: ShardIndex,
    connector: CipherConnector,
    digest: str,
    start: int | None = None,
    end: int | None = None,
    *,
    self_flag: int = 0,
) -> list[Message]:
    """Return a conversation's messages in ascending timestamp order.

    Both bounds are inclusive; ``None`` leaves that side open. A digest that
    is not indexed, or a table that fails to query, yields an empty list.
    """
    table = index.find(digest)
    if table is None:
        _logger.info("messages.table_not_indexed", digest=digest)
        return []

    sql, params = _build_query(table.name, start, end)
    try:
        with connector.open(table.shard.path) as conn:
            rows = conn.execute(sql, params).fetchall()
    except CipherOpenError as exc:
        _logger.warning("messages.shard_unavailable", table=table.name, shard=table.shard.name, reason=exc.reason)
        return []
    except connector.error_types as exc:
        _logger.warning("messages.query_failed", table=table.name, shard=table.shard.name, error=str(exc))
        return []

    messages = [Message.from_row(row, self_flag=self_flag) for row in rows]
    # Stored timestamps may be text in some rows; SQL ordering alone does not guarantee numeric order.
    messages.sort(key=lambda message: message.timestamp)
    return messages
