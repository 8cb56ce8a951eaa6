import sqlite3

import pytest
from structlog.testing import capture_logs

from tests.archive_utils import KEY, chat_table
from wechat_archive import open_archive
from wechat_archive.config import get_settings
from wechat_archive.contacts import ContactKind
from wechat_archive.errors import NoValidUserError
from wechat_archive.session import ArchiveSession, SessionState
from wechat_archive.utils import md5_digest


@pytest.fixture
def session(isolated_env, populated):
    archive = ArchiveSession(get_settings(), driver=sqlite3)
    assert archive.init_session(KEY)
    yield archive
    archive.close()


def test_init_reaches_ready_and_indexes_tables(session):
    assert session.state is SessionState.READY
    assert session.profile is not None and session.profile.profile_id == "wxid_owner"
    assert [table.name for table in session.conversation_tables()] == [
        chat_table("wxid_alice"),
        chat_table("12345@chatroom"),
        chat_table("wxid_bob"),
        chat_table("ghost@unknown"),
    ]


def test_wrong_key_fails_and_queries_stay_empty(isolated_env, factory):
    factory.keystore("wxid_owner", valid=False)
    factory.contacts("wxid_owner", [("wxid_alice", "Alice")])
    archive = ArchiveSession(get_settings(), driver=sqlite3)

    assert archive.init_session(KEY) is False
    assert archive.state is SessionState.FAILED
    assert isinstance(archive.last_error, NoValidUserError)
    assert archive.list_contacts() == []
    assert archive.list_messages(md5_digest("wxid_alice")) == []
    assert archive.search_keyword("anything") is None
    assert archive.lookup_group_member("wxid_alice") is None


def test_missing_archive_root_fails(isolated_env):
    archive = ArchiveSession(get_settings(), driver=sqlite3)
    assert archive.init_session(KEY) is False
    assert archive.state is SessionState.FAILED


def test_failed_session_can_be_retried(isolated_env, factory):
    archive = ArchiveSession(get_settings(), driver=sqlite3)
    assert archive.init_session(KEY) is False
    factory.keystore("wxid_owner")
    assert archive.init_session(KEY) is True
    assert archive.ready


def test_ready_session_rejects_reinit(session):
    assert session.init_session(KEY) is False
    assert session.state is SessionState.READY


def test_list_contacts_merges_direct_groups_and_unknown(session):
    contacts = session.list_contacts()
    by_digest = {contact.digest: contact for contact in contacts}

    assert [c.identifier for c in contacts[:3]] == ["wxid_alice", "wxid_bob", "wxid_nameless"]
    club = by_digest[md5_digest("12345@chatroom")]
    assert club.kind is ContactKind.GROUP and club.display_name == "Hiking Club"
    ghost_digest = md5_digest("ghost@unknown")
    ghost = by_digest[ghost_digest]
    assert ghost.kind is ContactKind.USER
    assert ghost.identifier == f"Unknown_{ghost_digest}"
    assert ghost.display_name == f"Chat_{ghost_digest}"
    assert md5_digest("gh_newsbot") not in by_digest
    assert len(contacts) == len(by_digest)


def test_list_contacts_filter_does_not_resurrect_filtered_contacts(session):
    contacts = session.list_contacts("Hik")
    assert [contact.display_name for contact in contacts] == ["Hiking Club"]


def test_list_messages_ascending_with_bounds(session):
    rows = session.list_messages(md5_digest("wxid_alice"), start=150)
    assert [row.timestamp for row in rows] == [200, 300]


def test_list_messages_for_unindexed_digest_is_empty(session):
    assert session.list_messages(md5_digest("wxid_nameless")) == []


def test_enriched_messages_resolve_group_senders(session):
    enriched = session.list_enriched_messages(md5_digest("12345@chatroom"))
    assert [item.sender_name for item in enriched] == ["Carol", ""]
    assert enriched[0].content == "morning all"
    assert enriched[1].content == "wxid_stranger:who am i"


def test_search_keyword_returns_table_name(session):
    assert session.search_keyword("lake") == chat_table("wxid_bob")
    assert session.search_keyword("volcano") is None


def test_lookup_group_member_cached(session):
    first = session.lookup_group_member("wxid_alice")
    assert first is not None and first.display_name == "Alice in group"
    assert session.lookup_group_member("wxid_alice") == first


def test_closed_session_serves_nothing(session):
    session.close()
    assert session.state is SessionState.CLOSED
    assert session.profile is None
    assert session.index is None
    assert session.group_member_names() == {}
    assert session.conversation_tables() == []
    assert session.list_contacts() == []
    assert session.list_enriched_messages(md5_digest("wxid_alice")) == []
    assert session.init_session(KEY) is False
    session.close()


def test_context_manager_closes(isolated_env, populated):
    with ArchiveSession(get_settings(), driver=sqlite3) as archive:
        assert archive.init_session(KEY)
    assert archive.state is SessionState.CLOSED


def test_open_archive_helper(isolated_env, populated):
    archive = open_archive(KEY, driver=sqlite3)
    assert archive is not None and archive.ready
    archive.close()
    assert open_archive("0xnothex", driver=sqlite3) is None


def test_group_member_names(session):
    assert session.group_member_names() == {"wxid_alice": "Alice in group", "wxid_carol": "Carol"}


def test_repeated_search_does_not_report_failed_shard_again(session):
    assert [shard.name for shard in session.index.failed] == ["msg_2.db"]
    with capture_logs() as logs:
        session.search_keyword("volcano")
        session.search_keyword("volcano")
    assert not [entry for entry in logs if entry["event"] == "cipher.open_failed"]
