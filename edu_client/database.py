"""
Local Database Connection.

Owns the single SQLite connection that backs durable client state (the
credential store).  This module only manages the raw *connection*; query
logic lives in the components that own each table.

Usage (dependency injection at app startup)::

    from edu_client.database import DatabaseManager
    from edu_client.logger import StructuredLogger

    db = DatabaseManager(
        sqlite_path=Path(config.TOKEN_DB_PATH),
        logger=StructuredLogger(name="database"),
    )
    # Inject `db` into the token store backend.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from edu_client.logger import StructuredLogger


class DatabaseManager:
    """Manages the connection to the local SQLite database.

    Fully configured at construction time via dependency injection.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"`` for a throwaway database.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(self, sqlite_path: Path | str, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the write lock for SQLite writes.

        All code that performs SQLite writes should acquire this lock
        first::

            with db.write_lock:
                db.sqlite.execute("INSERT ...")
                db.sqlite.commit()
        """
        return self._write_lock

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            if self._closed:
                return
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                pass
            self._closed = True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path | str) -> sqlite3.Connection:
        """Open (or create) a SQLite database and wrap failures in a logged error.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process.  Please check file permissions and try again."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
