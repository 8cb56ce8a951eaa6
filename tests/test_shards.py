import re

from tests.archive_utils import chat_table
from wechat_archive.profile import Profile
from wechat_archive.shards import SHARD_COUNT, build_index, is_conversation_table, iter_shards
from wechat_archive.utils import md5_digest

_TABLE_RE = re.compile(r"^Chat_[0-9a-f]{32}$")


def _profile(factory) -> Profile:
    return Profile(profile_id="wxid_owner", archive_root=factory.root)


def test_iter_shards_covers_fixed_range(factory):
    shards = list(iter_shards(_profile(factory)))
    assert SHARD_COUNT == 10
    assert [shard.index for shard in shards] == list(range(10))
    assert shards[4].name == "msg_4.db"


def test_index_follows_shard_then_discovery_order(populated, connector):
    index = build_index(_profile(populated), connector)

    assert [table.name for table in index] == [
        chat_table("wxid_alice"),
        chat_table("12345@chatroom"),
        chat_table("wxid_bob"),
        chat_table("ghost@unknown"),
    ]
    assert [table.shard.index for table in index] == [0, 0, 3, 3]


def test_index_entries_all_match_table_pattern(populated, connector):
    index = build_index(_profile(populated), connector)
    assert len(index) > 0
    assert all(_TABLE_RE.fullmatch(table.name) for table in index)


def test_missing_shards_skipped_and_corrupt_shards_recorded(populated, connector):
    index = build_index(_profile(populated), connector)
    opened = sorted(path.name for path in connector.opened)
    # Absent shards are never opened; present ones are opened exactly once.
    assert opened == ["msg_0.db", "msg_2.db", "msg_3.db"]
    assert [shard.name for shard in index.failed] == ["msg_2.db"]


def test_non_conversation_tables_are_ignored(factory, connector):
    digest = md5_digest("wxid_alice")
    factory.raw_shard(
        "wxid_owner",
        1,
        [
            "CREATE TABLE WCContactExt (x)",
            "CREATE TABLE ChatExt2 (x)",
            "CREATE TABLE Chat_short (x)",
            f"CREATE TABLE Chat_{'A' * 32} (x)",
            f"CREATE TABLE Chat_{digest} (x)",
            "CREATE TABLE XChat_0123 (x)",
        ],
    )
    index = build_index(_profile(factory), connector)
    assert [table.name for table in index] == [f"Chat_{digest}"]


def test_find_is_exact_and_case_insensitive(populated, connector):
    index = build_index(_profile(populated), connector)
    digest = md5_digest("wxid_bob")
    found = index.find(digest.upper())
    assert found is not None and found.digest == digest
    assert found.shard.name == "msg_3.db"
    assert index.find(digest[:-1]) is None
    assert index.find("not-a-digest") is None


def test_by_shard_groups_preserving_order(populated, connector):
    grouped = build_index(_profile(populated), connector).by_shard()
    assert [shard.name for shard in grouped] == ["msg_0.db", "msg_3.db"]
    assert [table.name for table in next(iter(grouped.values()))] == [
        chat_table("wxid_alice"),
        chat_table("12345@chatroom"),
    ]


def test_is_conversation_table():
    assert is_conversation_table("Chat_" + "0" * 32)
    assert not is_conversation_table("Chat_" + "0" * 31)
    assert not is_conversation_table("Chat_" + "G" * 32)
