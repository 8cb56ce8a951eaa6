"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

_DOTENV_PATH: Final[Path] = Path(".env")

DEFAULT_ARCHIVE_ROOT: Final[str] = (
    "~/Library/Containers/com.tencent.xinWeChat/Data/Library/Application Support/"
    "com.tencent.xinWeChat/2.0b4.0.9"
)


def _build_decouple_config() -> DecoupleConfig:
    # Missing .env (CI/tests) falls back to os.environ only.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class ArchiveSettings:
    """Where the archive lives and how its rows are interpreted."""

    root: str
    # Value of the directional column that marks a message sent by the archive owner.
    # Observed behaviour, not documented schema; keep it overridable.
    self_sender_flag: int
    non_user_prefixes: list[str]
    group_sender_prefix: str
    unknown_contact_name: str

    @property
    def root_path(self) -> Path:
        return Path(self.root).expanduser()


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    archive: ArchiveSettings
    # Logging
    log_level: str
    log_json_enabled: bool
    log_rich_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    def _csv(name: str, default: str) -> list[str]:
        raw = _decouple_config(name, default=default)
        return [part.strip() for part in raw.split(",") if part.strip()]

    archive_settings = ArchiveSettings(
        root=_decouple_config("ARCHIVE_ROOT", default=DEFAULT_ARCHIVE_ROOT),
        self_sender_flag=_int(_decouple_config("SELF_SENDER_FLAG", default="0"), default=0),
        non_user_prefixes=_csv("NON_USER_PREFIXES", default="gh_"),
        group_sender_prefix=_decouple_config("GROUP_SENDER_PREFIX", default="wxid_"),
        unknown_contact_name=_decouple_config("UNKNOWN_CONTACT_NAME", default="Unknown user"),
    )

    return Settings(
        environment=environment,
        archive=archive_settings,
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
