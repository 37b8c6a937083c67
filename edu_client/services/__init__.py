"""
Session Pipeline Services Package.

Contains the token store, token manager, request executor, session
expiry broadcaster, event-stream decoder and the teacher API wrapper.

The ``create_services()`` factory wires them together and returns a
typed dict that the application layer can consume without knowing the
internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

import httpx

from edu_client.auth import AuthSession
from edu_client.config import AppConfig
from edu_client.database import DatabaseManager
from edu_client.logger import get_logger
from edu_client.services.api_client import ApiClient
from edu_client.services.session_events import SessionExpiryBroadcaster
from edu_client.services.teacher_api import TeacherApi
from edu_client.services.token_cipher import TokenCipher
from edu_client.services.token_manager import TokenManager
from edu_client.services.token_store import SqliteTokenBackend, TokenStore


class ServiceContainer(TypedDict):
    """Typed container for the session pipeline.

    Every entry is a single shared instance; ``http`` is owned by the
    container and closed by :func:`aclose_services`.
    """

    # --- Infrastructure ---
    http: httpx.AsyncClient
    token_store: TokenStore

    # --- Session pipeline ---
    token_manager: TokenManager
    session_events: SessionExpiryBroadcaster
    api_client: ApiClient
    teacher_api: TeacherApi
    auth_session: AuthSession


def build_http_client(config: AppConfig) -> httpx.AsyncClient:
    """Create the shared ``httpx.AsyncClient`` rooted at the API prefix."""
    return httpx.AsyncClient(
        base_url=config.api_root,
        timeout=httpx.Timeout(config.REQUEST_TIMEOUT_S),
        headers={"Accept": "application/json"},
    )


def create_services(
    config: AppConfig,
    db: Optional[DatabaseManager],
    http: Optional[httpx.AsyncClient] = None,
) -> ServiceContainer:
    """
    Wire the token store, token manager, broadcaster, request executor,
    teacher API and auth session together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup.

    Args:
        config: Application configuration.
        db: Initialised DatabaseManager with the schema applied, or
            ``None`` for memory-only token storage.
        http: Pre-built client (tests pass one with a mock transport).
            Defaults to :func:`build_http_client`.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("edu_client.services")

    # ------------------------------------------------------------------
    # 1. Token persistence
    # ------------------------------------------------------------------
    backend: Optional[SqliteTokenBackend] = None
    if db is not None:
        cipher: Optional[TokenCipher] = None
        if config.ENCRYPT_TOKENS:
            cipher = TokenCipher(
                salt_path=config.TOKEN_SALT_PATH,
                logger=logger,
                iterations=config.TOKEN_KDF_ITERATIONS,
            )
        backend = SqliteTokenBackend(db=db, logger=logger, cipher=cipher)
    token_store = TokenStore(backend=backend, logger=logger)

    # ------------------------------------------------------------------
    # 2. HTTP + token lifecycle
    # ------------------------------------------------------------------
    http_client = http if http is not None else build_http_client(config)
    token_manager = TokenManager(
        store=token_store,
        http=http_client,
        logger=logger,
        access_key=config.ACCESS_TOKEN_KEY,
        refresh_key=config.REFRESH_TOKEN_KEY,
        refresh_endpoint=config.REFRESH_ENDPOINT,
        single_flight=config.REFRESH_SINGLE_FLIGHT,
    )

    # ------------------------------------------------------------------
    # 3. Request pipeline
    # ------------------------------------------------------------------
    session_events = SessionExpiryBroadcaster(logger=logger)
    api_client = ApiClient(
        http=http_client,
        tokens=token_manager,
        broadcaster=session_events,
        logger=logger,
        invalid_session_phrases=config.SESSION_INVALID_PHRASES,
        stream_timeout=httpx.Timeout(
            config.REQUEST_TIMEOUT_S, read=config.STREAM_READ_TIMEOUT_S,
        ),
    )
    teacher_api = TeacherApi(api=api_client, tokens=token_manager, logger=logger)

    # ------------------------------------------------------------------
    # 4. Consumer-facing session
    # ------------------------------------------------------------------
    auth_session = AuthSession(
        api=teacher_api,
        tokens=token_manager,
        broadcaster=session_events,
        logger=get_logger("edu_client.auth"),
    )

    return ServiceContainer(
        http=http_client,
        token_store=token_store,
        token_manager=token_manager,
        session_events=session_events,
        api_client=api_client,
        teacher_api=teacher_api,
        auth_session=auth_session,
    )


async def aclose_services(services: ServiceContainer) -> None:
    """Detach the session and close the shared HTTP client."""
    services["auth_session"].close()
    await services["http"].aclose()
