"""
Token Store.

Durable key/value persistence for the access and refresh tokens.

``TokenStore`` fronts a pluggable backend and guarantees that no backend
failure ever reaches its callers:

- At construction a disposable probe value is written and removed.  If
  the probe raises, the store logs a warning and serves every later call
  from an in-process dictionary (nothing survives a restart).
- After a successful probe, an individual failing operation is logged and
  treated as a no-op (``get`` answers ``None``).

Disabled storage and a full disk are not told apart; both end up as a
logged warning and reduced durability.

The default backend is the ``credential_store`` table in the local
SQLite database, optionally encrypted with ``TokenCipher``.
"""

from __future__ import annotations

from typing import Optional, Protocol

from edu_client.database import DatabaseManager
from edu_client.logger import StructuredLogger
from edu_client.services.token_cipher import TokenCipher

_PROBE_KEY: str = "__storage_test__"


class KeyValueBackend(Protocol):
    """Minimal persistence contract used by ``TokenStore``.

    Implementations may raise anything; ``TokenStore`` absorbs it.
    """

    def read(self, key: str) -> Optional[str]: ...  # noqa: E704

    def write(self, key: str, value: str) -> None: ...  # noqa: E704

    def delete(self, key: str) -> None: ...  # noqa: E704


class SqliteTokenBackend:
    """``credential_store`` table backend.

    This backend accesses SQLite directly rather than through a
    repository because tokens are infrastructure state, not domain data.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager``; the schema must already contain
        the ``credential_store`` table.
    cipher:
        When given, values are stored AES-256-GCM encrypted.  A row that
        fails decryption reads as ``None``.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        cipher: Optional[TokenCipher] = None,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._cipher: Optional[TokenCipher] = cipher

    def read(self, key: str) -> Optional[str]:
        row = self._db.sqlite.execute(
            "SELECT value, nonce, tag FROM credential_store WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None

        if row["nonce"] is None or row["tag"] is None:
            if self._cipher is not None:
                self._logger.warning(
                    "credential_store[%s] is unencrypted but encryption is "
                    "enabled; ignoring the stored value.",
                    key,
                )
                return None
            value = row["value"]
            return value.decode("utf-8") if isinstance(value, bytes) else str(value)

        if self._cipher is None:
            self._logger.warning(
                "credential_store[%s] is encrypted but no cipher is "
                "configured; ignoring the stored value.",
                key,
            )
            return None

        try:
            return self._cipher.decrypt(row["value"], row["nonce"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of credential_store[%s] failed (corrupted data "
                "or machine identity changed): %s",
                key,
                exc,
            )
            return None

    def write(self, key: str, value: str) -> None:
        nonce: Optional[bytes] = None
        tag: Optional[bytes] = None
        stored: bytes
        if self._cipher is not None:
            stored, nonce, tag = self._cipher.encrypt(value)
        else:
            stored = value.encode("utf-8")

        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                INSERT INTO credential_store (key, value, nonce, tag)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value      = excluded.value,
                    nonce      = excluded.nonce,
                    tag        = excluded.tag,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, stored, nonce, tag),
            )
            self._db.sqlite.commit()

    def delete(self, key: str) -> None:
        with self._db.write_lock:
            self._db.sqlite.execute(
                "DELETE FROM credential_store WHERE key = ?",
                (key,),
            )
            self._db.sqlite.commit()


class TokenStore:
    """Failure-tolerant key/value store for credential tokens.

    Parameters
    ----------
    backend:
        Persistence backend, or ``None`` to run in-memory only from the
        start.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        backend: Optional[KeyValueBackend],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._memory: dict[str, str] = {}
        self._backend: Optional[KeyValueBackend] = None

        if backend is None:
            self._logger.warning(
                "No token persistence backend configured; using "
                "memory-only storage."
            )
        elif self._probe(backend):
            self._backend = backend

    @property
    def is_persistent(self) -> bool:
        """``True`` when values survive a process restart."""
        return self._backend is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[str]:
        if self._backend is None:
            return self._memory.get(name)
        try:
            return self._backend.read(name)
        except Exception as exc:
            self._logger.warning("Failed to read %s from token storage: %s", name, exc)
            return None

    def set(self, name: str, value: str) -> None:
        if self._backend is None:
            self._memory[name] = value
            return
        try:
            self._backend.write(name, value)
        except Exception as exc:
            self._logger.warning("Failed to write %s to token storage: %s", name, exc)

    def remove(self, name: str) -> None:
        if self._backend is None:
            self._memory.pop(name, None)
            return
        try:
            self._backend.delete(name)
        except Exception as exc:
            self._logger.warning("Failed to remove %s from token storage: %s", name, exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _probe(self, backend: KeyValueBackend) -> bool:
        """Write and remove a disposable value to test the backend once."""
        try:
            backend.write(_PROBE_KEY, _PROBE_KEY)
            backend.delete(_PROBE_KEY)
        except Exception as exc:
            self._logger.warning(
                "Token storage not available (%s). Using memory-only storage.",
                exc,
            )
            return False
        return True
