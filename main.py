"""
edu-client Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite token schema, restores the persisted session and
reports the resulting state.  Every subsystem is wired here; no
module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys
import traceback
from pathlib import Path

from edu_client.config import AppConfig, get_config
from edu_client.database import DatabaseManager
from edu_client.logger import StructuredLogger, get_logger
from edu_client.schema import initialize_schema
from edu_client.services import aclose_services, create_services


async def run(config: AppConfig, db: DatabaseManager, logger: StructuredLogger) -> None:
    """Wire the services, bootstrap the session and log the outcome."""
    services = create_services(config=config, db=db)
    session = services["auth_session"]
    try:
        state = await session.bootstrap()
        teacher = session.teacher
        logger.info(
            "Session bootstrap finished in state %s.",
            state,
            extra={
                "event": "BOOTSTRAP_COMPLETE",
                "authenticated": session.is_authenticated,
                "needs_email_verification": session.needs_email_verification,
                "teacher_id": teacher.id if teacher is not None else None,
                "persistent_tokens": services["token_store"].is_persistent,
            },
        )
        subscription = session.subscription_info
        if subscription is not None:
            logger.info(
                "Subscription tier %s: %d of %d tokens used this month.",
                subscription.tier,
                subscription.current_usage,
                subscription.monthly_quota,
            )
    finally:
        await aclose_services(services)


def main() -> None:
    """Application entry point: wire dependencies and restore the session."""
    logger: StructuredLogger = get_logger("edu_client.main")
    logger.info("Starting edu-client...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (local SQLite token storage)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(config.TOKEN_DB_PATH),
        logger=StructuredLogger(name="edu_client.database"),
    )

    # DatabaseManager.close() is idempotent; this covers unclean exits.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="edu_client.schema"))

    # ------------------------------------------------------------------
    # 4. Services + session bootstrap
    # ------------------------------------------------------------------
    try:
        asyncio.run(run(config, db, logger))
    finally:
        db.close()
        logger.info("edu-client shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")
        sys.exit(1)
