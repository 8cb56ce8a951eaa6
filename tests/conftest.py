from pathlib import Path

import pytest
import structlog

from tests.archive_utils import ArchiveFactory, CountingConnector, chat_table
from wechat_archive import cli as _cli
from wechat_archive.config import clear_settings_cache


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Route structlog output nowhere so CLI stdout stays parseable."""
    structlog.configure(
        processors=[],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    monkeypatch.setattr(_cli, "_LOGGING_CONFIGURED", True)
    yield
    structlog.reset_defaults()


@pytest.fixture
def archive_root(tmp_path) -> Path:
    return tmp_path / "archive"


@pytest.fixture
def factory(archive_root) -> ArchiveFactory:
    return ArchiveFactory(archive_root)


@pytest.fixture
def isolated_env(archive_root, monkeypatch):
    """Point settings at the temporary archive and reset the settings cache."""
    monkeypatch.setenv("ARCHIVE_ROOT", str(archive_root))
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.delenv("SELF_SENDER_FLAG", raising=False)
    monkeypatch.delenv("NON_USER_PREFIXES", raising=False)
    clear_settings_cache()
    try:
        yield
    finally:
        clear_settings_cache()


@pytest.fixture
def connector() -> CountingConnector:
    return CountingConnector()


@pytest.fixture
def populated(factory) -> ArchiveFactory:
    """A profile with contacts, a group, and three shards (one missing, one corrupt)."""
    factory.keystore("wxid_owner")
    factory.contacts(
        "wxid_owner",
        [
            ("wxid_alice", "Alice"),
            ("wxid_bob", "bob"),
            ("gh_newsbot", "News Bot"),
            ("wxid_nameless", None),
        ],
    )
    factory.groups(
        "wxid_owner",
        [("12345@chatroom", "Hiking Club"), ("", "ignored"), ("99999@chatroom", None)],
        [
            ("wxid_alice", "Alice in group", "https://img.example/alice.png"),
            ("wxid_carol", "Carol", "https://img.example/carol.png"),
        ],
    )
    factory.shard(
        "wxid_owner",
        0,
        {
            chat_table("wxid_alice"): [
                (0, 1, 100, "hello alice", 2),
                (1, 1, 300, "third", 2),
                (0, 1, 200, "second", 2),
            ],
            chat_table("12345@chatroom"): [
                (1, 1, 150, "wxid_carol:\nmorning all", 2),
                (1, 1, 160, "wxid_stranger:who am i", 2),
            ],
        },
    )
    factory.corrupt_shard("wxid_owner", 2)
    factory.shard(
        "wxid_owner",
        3,
        {
            chat_table("wxid_bob"): [(1, 1, 500, "see you at the lake", 2)],
            chat_table("ghost@unknown"): [(1, 10000, 600, "system notice", 2)],
        },
    )
    return factory
