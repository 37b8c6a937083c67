"""
Application Configuration.

Pydantic Settings model for the edu-client session pipeline.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

_LOCAL_HOSTS: frozenset[str] = frozenset({"localhost", "127.0.0.1", "::1"})


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend ---
    API_BASE_URL: str = "http://localhost:3000"
    API_PREFIX: str = "/api/teacher"
    REFRESH_ENDPOINT: str = "/auth/refresh"

    # --- HTTP timeouts ---
    REQUEST_TIMEOUT_S: float = 30.0
    # Lesson generation streams can stay silent for minutes between frames.
    STREAM_READ_TIMEOUT_S: float = 300.0

    # --- Token persistence ---
    TOKEN_DB_PATH: str = "edu_client_tokens.db"
    ACCESS_TOKEN_KEY: str = "teacher_auth_token"
    REFRESH_TOKEN_KEY: str = "teacher_refresh_token"
    ENCRYPT_TOKENS: bool = True
    TOKEN_SALT_PATH: Path = Field(
        default_factory=lambda: Path.home() / ".edu_client_token_salt"
    )
    TOKEN_KDF_ITERATIONS: int = 600_000

    # --- Refresh behaviour ---
    REFRESH_SINGLE_FLIGHT: bool = False

    # Lower-cased substrings that mark an error body as an invalidated
    # session even when the status code is not 401.
    SESSION_INVALID_PHRASES: list[str] = Field(default_factory=lambda: [
        "invalid token",
        "invalid or expired token",
        "token expired",
        "token has expired",
        "expired token",
        "jwt expired",
        "jwt malformed",
        "session expired",
    ])

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "edu_client.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_risky_settings(self) -> "AppConfig":
        """Emit startup warnings for configuration that is probably wrong.

        Bearer tokens travel on every call, so a plain-HTTP backend on a
        non-local host is flagged loudly.
        """
        _log = logging.getLogger("edu_client.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        parts = urlsplit(self.API_BASE_URL)
        if parts.scheme == "http" and parts.hostname not in _LOCAL_HOSTS:
            _log.warning(
                "API_BASE_URL uses plain HTTP for host '%s'; access and "
                "refresh tokens will be sent unencrypted.",
                parts.hostname,
            )

        if not self.ENCRYPT_TOKENS:
            _log.warning(
                "ENCRYPT_TOKENS is disabled; tokens are stored in plaintext "
                "in %s.",
                self.TOKEN_DB_PATH,
            )

        return self

    @property
    def api_root(self) -> str:
        """Base URL with the API prefix applied, without a trailing slash."""
        return self.API_BASE_URL.rstrip("/") + "/" + self.API_PREFIX.strip("/")


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern to avoid the lock overhead on the fast path while remaining
    thread-safe during first initialisation.

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
