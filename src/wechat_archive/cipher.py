"""Encrypted store access under the archive's fixed legacy cipher configuration.

Every store in the archive was written by a SQLCipher 3 era writer, so each
connection must be configured with exactly these parameters before the key is
useful:

- page size 1024 bytes
- PBKDF2-HMAC-SHA1 key derivation with 64000 iterations
- HMAC-SHA1 page authentication

Parameter drift (e.g. a newer writer using 4096 byte pages) is reported as a
diagnostic hint, never retried with other parameters.

Connections are scoped: ``CipherConnector.open`` is a context manager and the
native handle is released on every exit path, including a failed probe.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

import structlog

from .errors import CipherOpenError
from .keys import is_hex_key, mask_key

_logger = structlog.get_logger(__name__)

_PROBE_SQL = "SELECT count(*) FROM sqlite_master"


@dataclass(slots=True, frozen=True)
class CipherConfig:
    """Cipher parameters applied to every opened store."""

    compatibility: int = 3
    page_size: int = 1024
    kdf_iter: int = 64000
    hmac_algorithm: str = "HMAC_SHA1"
    kdf_algorithm: str = "PBKDF2_HMAC_SHA1"

    def pragmas(self) -> list[str]:
        """Statements issued after ``PRAGMA key``, in order."""
        return [
            f"PRAGMA cipher_compatibility = {self.compatibility}",
            f"PRAGMA cipher_page_size = {self.page_size}",
            f"PRAGMA kdf_iter = {self.kdf_iter}",
            f"PRAGMA cipher_hmac_algorithm = {self.hmac_algorithm}",
            f"PRAGMA cipher_kdf_algorithm = {self.kdf_algorithm}",
        ]


LEGACY_CIPHER = CipherConfig()


def load_driver() -> ModuleType:
    """Import the SQLCipher DB-API driver lazily to keep module import cheap."""
    import sqlcipher3

    return sqlcipher3


def diagnose(message: str) -> str | None:
    """Map a driver error message to an operator-facing troubleshooting hint."""
    lowered = message.lower()
    if "file is not a database" in lowered:
        return (
            "wrong key, not an archive store, or cipher parameters changed "
            "(a newer writer may use 4096 byte pages)"
        )
    if "hmac" in lowered:
        return "key may be right but the HMAC algorithm or page size does not match"
    return None


def key_pragma(key: str) -> str:
    # The driver cannot bind parameters for PRAGMA key; callers guarantee a hex-only key.
    return f"PRAGMA key = \"x'{key}'\""


class CipherConnector:
    """Opens individual encrypted store files with one session key."""

    def __init__(
        self,
        key: str,
        *,
        config: CipherConfig = LEGACY_CIPHER,
        driver: ModuleType | None = None,
    ) -> None:
        self._key = key
        self.config = config
        self._driver = driver

    def __repr__(self) -> str:
        return f"CipherConnector(key={mask_key(self._key)!r}, config={self.config!r})"

    @property
    def driver(self) -> ModuleType:
        if self._driver is None:
            self._driver = load_driver()
        return self._driver

    @property
    def error_types(self) -> tuple[type[BaseException], ...]:
        """Exceptions the driver raises for query failures on an open store."""
        return (self.driver.Error,)

    def _connect(self, path: Path) -> Any:
        # Read-only URI: the archive is never written and a missing file is never created.
        uri = f"{path.resolve().as_uri()}?mode=ro"
        return self.driver.connect(uri, uri=True, check_same_thread=False)

    def _configure(self, conn: Any) -> None:
        conn.execute(key_pragma(self._key))
        for statement in self.config.pragmas():
            conn.execute(statement)
        conn.execute(_PROBE_SQL).fetchone()

    def _open_failed(self, path: Path, exc: BaseException, *, stage: str) -> CipherOpenError:
        hint = diagnose(str(exc))
        _logger.warning(
            "cipher.open_failed",
            path=str(path),
            stage=stage,
            key=mask_key(self._key),
            error=str(exc),
            hint=hint,
        )
        return CipherOpenError(path, str(exc), hint)

    @contextmanager
    def open(self, path: Path) -> Iterator[Any]:
        """Yield a verified connection to ``path``; raise ``CipherOpenError`` otherwise."""
        path = Path(path)
        if not path.is_file():
            raise CipherOpenError(path, "file does not exist")
        if not is_hex_key(self._key):
            raise CipherOpenError(path, "key is not a hex string")

        driver = self.driver
        try:
            conn = self._connect(path)
        except driver.Error as exc:
            raise self._open_failed(path, exc, stage="connect") from exc
        try:
            try:
                self._configure(conn)
            except driver.Error as exc:
                raise self._open_failed(path, exc, stage="configure") from exc
            conn.row_factory = driver.Row
            yield conn
        finally:
            conn.close()

    def probe(self, path: Path) -> bool:
        """Return True if ``path`` opens and decrypts with this connector."""
        try:
            with self.open(path):
                return True
        except CipherOpenError as exc:
            _logger.debug("cipher.probe_failed", path=str(path), reason=exc.reason)
            return False
