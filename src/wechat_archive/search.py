"""Linear keyword search across every shard's conversation tables."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .cipher import CipherConnector
from .errors import CipherOpenError
from .messages import CONTENT_COLUMN
from .profile import Profile
from .shards import ShardIndex, ShardRef, iter_shards, list_conversation_tables
from .utils import escape_like

_logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class SearchHit:
    table: str
    shard: ShardRef


def search_keyword(
    profile: Profile,
    connector: CipherConnector,
    keyword: str,
    *,
    index: ShardIndex | None = None,
) -> SearchHit | None:
    """Return the first table, by shard then discovery order, containing ``keyword``.

    Scanning stops at the first hit. Tables that cannot be probed are skipped.
    Shards listed in ``index.failed`` were already reported when the index was
    built and are not reopened.
    """
    if not keyword:
        return None
    pattern = f"%{escape_like(keyword)}%"
    failed = set(index.failed) if index is not None else set()

    for shard in iter_shards(profile):
        if not shard.exists() or shard in failed:
            continue
        try:
            with connector.open(shard.path) as conn:
                for table in list_conversation_tables(conn):
                    try:
                        found = conn.execute(
                            f'SELECT 1 FROM "{table}" WHERE {CONTENT_COLUMN} LIKE ? ESCAPE \'\\\' LIMIT 1',
                            (pattern,),
                        ).fetchone()
                    except connector.error_types as exc:
                        _logger.debug("search.table_skipped", table=table, shard=shard.name, error=str(exc))
                        continue
                    if found is not None:
                        _logger.info("search.hit", table=table, shard=shard.name)
                        return SearchHit(table=table, shard=shard)
        except CipherOpenError as exc:
            _logger.debug("search.shard_skipped", shard=shard.name, reason=exc.reason)
        except connector.error_types as exc:
            _logger.warning("search.shard_failed", shard=shard.name, error=str(exc))
    return None
