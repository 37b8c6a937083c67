"""
Token Lifecycle Manager.

Owns the in-memory access / refresh token slots, hydrates them from the
``TokenStore`` once at startup, and performs the refresh exchange with
the backend.

One instance is created by the composition root and shared by reference
with ``ApiClient`` and ``AuthSession``.  All methods run on the event
loop thread; the slots are plain attributes and the last refresh to
complete wins.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from edu_client.errors import NetworkError, NoRefreshToken, RefreshFailed
from edu_client.logger import StructuredLogger
from edu_client.models.auth_models import CredentialPair, TokenGrant, unwrap_envelope
from edu_client.services.token_store import TokenStore


class TokenManager:
    """In-memory credential state with durable mirroring and refresh.

    Parameters
    ----------
    store:
        Failure-tolerant persistence for both tokens.
    http:
        Shared ``httpx.AsyncClient`` whose ``base_url`` points at the API
        root; its cookie jar carries the secondary cookie session.
    logger:
        Structured logger instance.
    access_key / refresh_key:
        Store keys for the two tokens.
    refresh_endpoint:
        Path of the refresh route, relative to the client's base URL.
    single_flight:
        When ``True``, concurrent :meth:`refresh_access_token` calls share
        one in-flight exchange instead of each posting the same refresh
        token.
    """

    def __init__(
        self,
        store: TokenStore,
        http: httpx.AsyncClient,
        logger: StructuredLogger,
        access_key: str = "teacher_auth_token",
        refresh_key: str = "teacher_refresh_token",
        refresh_endpoint: str = "/auth/refresh",
        single_flight: bool = False,
    ) -> None:
        self._store: TokenStore = store
        self._http: httpx.AsyncClient = http
        self._logger: StructuredLogger = logger
        self._access_key: str = access_key
        self._refresh_key: str = refresh_key
        self._refresh_endpoint: str = refresh_endpoint
        self._single_flight: bool = single_flight

        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._refresh_task: Optional[asyncio.Task[dict[str, Any]]] = None

    @property
    def refresh_endpoint(self) -> str:
        return self._refresh_endpoint

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Load both tokens from the store into memory.

        Returns ``True`` when an access token was found.
        """
        stored_access = self._store.get(self._access_key)
        stored_refresh = self._store.get(self._refresh_key)

        if stored_access:
            self._access_token = stored_access
        if stored_refresh:
            self._refresh_token = stored_refresh

        self._logger.debug(
            "Token state initialised (access=%s, refresh=%s).",
            self._access_token is not None,
            self._refresh_token is not None,
        )
        return self._access_token is not None

    def get_access_token(self) -> Optional[str]:
        # Memory only: the stored copy may belong to a token just cleared.
        return self._access_token

    def get_refresh_token(self) -> Optional[str]:
        if self._refresh_token:
            return self._refresh_token
        return self._store.get(self._refresh_key)

    @property
    def credentials(self) -> CredentialPair:
        return CredentialPair(
            access_token=self._access_token,
            refresh_token=self.get_refresh_token(),
        )

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    def set_tokens(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Update whichever tokens are given, in memory and in the store."""
        if access_token:
            self._access_token = access_token
            self._store.set(self._access_key, access_token)
        if refresh_token:
            self._refresh_token = refresh_token
            self._store.set(self._refresh_key, refresh_token)

    def clear_tokens(self) -> None:
        """Forget both tokens.  Safe to call repeatedly."""
        self._access_token = None
        self._refresh_token = None
        self._store.remove(self._access_key)
        self._store.remove(self._refresh_key)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> dict[str, Any]:
        """Exchange the refresh token for a new access token.

        Returns
        -------
        dict
            The unwrapped refresh response payload.

        Raises
        ------
        NoRefreshToken
            No refresh token is available in memory or in the store.
        NetworkError
            The refresh request never got a response.
        RefreshFailed
            The backend rejected the refresh; both tokens were cleared.
        """
        if not self._single_flight:
            return await self._exchange_refresh_token()

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._exchange_refresh_token())
        else:
            self._logger.debug("Joining in-flight token refresh.")
        return await asyncio.shield(self._refresh_task)

    async def _exchange_refresh_token(self) -> dict[str, Any]:
        refresh_token = self.get_refresh_token()
        if not refresh_token:
            raise NoRefreshToken()

        try:
            response = await self._http.post(
                self._refresh_endpoint,
                json={"refreshToken": refresh_token},
            )
        except httpx.TransportError as exc:
            self._logger.warning("Network error during token refresh: %s", exc)
            raise NetworkError() from exc

        if not response.is_success:
            self.clear_tokens()
            self._logger.warning(
                "Token refresh rejected with status %d; tokens cleared.",
                response.status_code,
                extra={"event": "REFRESH_FAILED"},
            )
            raise RefreshFailed(status=response.status_code)

        try:
            payload = unwrap_envelope(response.json())
            grant = TokenGrant.model_validate(payload)
        except ValueError as exc:
            self.clear_tokens()
            self._logger.warning("Token refresh returned an unreadable body: %s", exc)
            raise RefreshFailed(status=response.status_code) from exc

        self.set_tokens(access_token=grant.token, refresh_token=grant.refresh_token)
        self._logger.info(
            "Access token refreshed (rotated refresh token: %s).",
            grant.refresh_token is not None,
            extra={"event": "TOKEN_REFRESHED"},
        )
        return payload
