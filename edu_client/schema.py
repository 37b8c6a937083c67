"""
Centralized SQLite Schema Initialization.

Defines the local database schema for durable client state and provides
a single entry-point -- :func:`initialize_schema` -- that creates all
required tables idempotently.  A ``schema_version`` table records the
applied version so a future layout change can be rolled forward.

Usage::

    from edu_client.database import DatabaseManager
    from edu_client.schema import initialize_schema

    initialize_schema(db.sqlite, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3

from edu_client.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 1

_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- credential_store (token key-value pairs) -----------------------------
    # nonce/tag are NULL when the value is stored unencrypted.
    """
    CREATE TABLE IF NOT EXISTS credential_store (
        key TEXT PRIMARY KEY,
        value BLOB NOT NULL,
        nonce BLOB,
        tag BLOB,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the current schema version, or ``0`` if unset."""
    row = conn.execute(
        "SELECT version FROM schema_version WHERE id = 1"
    ).fetchone()
    return row[0] if row is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Upsert the single-row version tracker to *version*.

    Does **not** commit.
    """
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Ensure the local SQLite database matches the current schema version.

    Every DDL statement uses ``IF NOT EXISTS``, so the function is safe
    to call on every startup.  The table creation and the version bump
    happen in one transaction; on failure everything is rolled back and
    the error re-raised.

    Args:
        conn: An open SQLite connection.
        logger: A :class:`~edu_client.logger.StructuredLogger` instance.
    """
    conn.execute(_TABLE_DEFINITIONS[0])
    conn.commit()

    current: int = _get_schema_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.debug("Schema is up to date (version %d).", current)
        return

    try:
        for ddl in _TABLE_DEFINITIONS[1:]:
            conn.execute(ddl)
        _set_schema_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            "Schema initialisation failed; rolled back to version %d.",
            current,
        )
        raise

    logger.info("Schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
