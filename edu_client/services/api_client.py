"""
Authenticated Request Executor.

Single path for every backend call.  ``ApiClient`` attaches the current
access token, recovers from an expired token by refreshing and retrying
**at most once**, and turns every failure into one of the
``edu_client.errors`` classes.

Per logical call:

1. Attach ``Authorization: Bearer <token>`` when one is held.  Cookies
   from the shared ``httpx.AsyncClient`` jar are always sent too.
2. No response at all → ``NetworkError``.  Transport failures never
   trigger a refresh.
3. 401 on the first attempt (and not from the refresh route) → refresh,
   then repeat the call once.  A failed refresh expires the session.
4. 401 on the retry → expire the session; there is no second refresh.
5. Any other error status → ``RequestError``, unless the error message
   says the token is invalid or expired, which expires the session.
6. 2xx → the parsed body.

Expiring the session means: clear both tokens, notify the
``SessionExpiryBroadcaster``, raise ``SessionExpired``.  The refresh
always finishes, and its tokens are stored, before the retried request
is built.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

from edu_client.errors import ClientError, NetworkError, RequestError, SessionExpired
from edu_client.logger import StructuredLogger
from edu_client.services.session_events import SessionExpiryBroadcaster
from edu_client.services.token_manager import TokenManager

_DEFAULT_INVALID_PHRASES: tuple[str, ...] = (
    "invalid token",
    "token expired",
    "expired token",
    "jwt expired",
    "session expired",
)


class ApiClient:
    """Authenticated HTTP executor with one-shot refresh-and-retry.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient`` with ``base_url`` set to the API
        root.
    tokens:
        The process-wide ``TokenManager``.
    broadcaster:
        Notified whenever a call concludes the session is lost.
    logger:
        Structured logger instance.
    invalid_session_phrases:
        Lower-case substrings that mark an error message as an
        invalidated session regardless of status code.
    stream_timeout:
        Timeout applied to streaming calls, which may idle for long
        stretches between frames.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenManager,
        broadcaster: SessionExpiryBroadcaster,
        logger: StructuredLogger,
        invalid_session_phrases: Sequence[str] = _DEFAULT_INVALID_PHRASES,
        stream_timeout: Optional[httpx.Timeout] = None,
    ) -> None:
        self._http: httpx.AsyncClient = http
        self._tokens: TokenManager = tokens
        self._broadcaster: SessionExpiryBroadcaster = broadcaster
        self._logger: StructuredLogger = logger
        self._invalid_phrases: tuple[str, ...] = tuple(
            phrase.lower() for phrase in invalid_session_phrases
        )
        self._stream_timeout: Optional[httpx.Timeout] = stream_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        authenticated: bool = True,
        attempt: int = 0,
    ) -> Any:
        """Issue one logical call and return its parsed body.

        ``authenticated=False`` sends no bearer token and never refreshes
        (login, sign-up and other public routes).

        Raises
        ------
        NetworkError, SessionExpired, RequestError
        """
        request = self._build_request(
            endpoint, method, json, params, headers, authenticated,
        )
        response = await self._send(request, stream=False)

        if self._should_recover(endpoint, response, authenticated):
            await self._recover_unauthorized(endpoint, attempt)
            return await self.request(
                endpoint,
                method=method,
                json=json,
                params=params,
                headers=headers,
                authenticated=authenticated,
                attempt=attempt + 1,
            )

        if not response.is_success:
            raise self._classify_error(endpoint, response, authenticated)

        return self._parse_body(response)

    async def get(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request(endpoint, method="GET", **kwargs)

    async def post(self, endpoint: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request(endpoint, method="POST", json=json, **kwargs)

    async def put(self, endpoint: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request(endpoint, method="PUT", json=json, **kwargs)

    async def patch(self, endpoint: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request(endpoint, method="PATCH", json=json, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request(endpoint, method="DELETE", **kwargs)

    @asynccontextmanager
    async def stream(
        self,
        endpoint: str,
        *,
        method: str = "POST",
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming call and yield the checked response.

        Authorization (including the single refresh-and-retry) is settled
        on the initial response, before the body is handed out.  Nothing
        is re-authorized once the caller starts reading.  The response is
        closed when the block exits.

        Usage::

            async with api.stream("/content/generate/full-lesson", json=body) as resp:
                async for chunk in resp.aiter_bytes():
                    ...
        """
        response = await self._open_stream(endpoint, method, json, headers, attempt=0)
        try:
            yield response
        finally:
            await response.aclose()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _open_stream(
        self,
        endpoint: str,
        method: str,
        json: Any,
        headers: Optional[dict[str, str]],
        attempt: int,
    ) -> httpx.Response:
        request = self._build_request(
            endpoint, method, json, None, headers, True, timeout=self._stream_timeout,
        )
        response = await self._send(request, stream=True)

        if self._should_recover(endpoint, response, True):
            await response.aclose()
            await self._recover_unauthorized(endpoint, attempt)
            return await self._open_stream(endpoint, method, json, headers, attempt + 1)

        if not response.is_success:
            try:
                await response.aread()
            except httpx.TransportError as exc:
                self._logger.warning(
                    "Error body of %s broke off (status %d): %s",
                    endpoint,
                    response.status_code,
                    exc,
                    extra={"event": "NETWORK_ERROR"},
                )
                raise NetworkError() from exc
            finally:
                await response.aclose()
            raise self._classify_error(endpoint, response, True)

        return response

    def _build_request(
        self,
        endpoint: str,
        method: str,
        json: Any,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        authenticated: bool,
        timeout: Optional[httpx.Timeout] = None,
    ) -> httpx.Request:
        merged: dict[str, str] = dict(headers or {})
        if authenticated:
            token = self._tokens.get_access_token()
            if token:
                merged["Authorization"] = f"Bearer {token}"

        extensions: dict[str, Any] = {}
        if timeout is not None:
            extensions["timeout"] = timeout.as_dict()

        return self._http.build_request(
            method,
            endpoint,
            json=json,
            params=params,
            headers=merged,
            extensions=extensions or None,
        )

    async def _send(self, request: httpx.Request, stream: bool) -> httpx.Response:
        try:
            return await self._http.send(request, stream=stream)
        except httpx.TransportError as exc:
            self._logger.warning(
                "%s %s failed without a response: %s",
                request.method,
                request.url.path,
                exc,
                extra={"event": "NETWORK_ERROR"},
            )
            raise NetworkError() from exc

    def _should_recover(
        self,
        endpoint: str,
        response: httpx.Response,
        authenticated: bool,
    ) -> bool:
        return (
            response.status_code == 401
            and authenticated
            and not self._is_refresh_endpoint(endpoint)
        )

    def _is_refresh_endpoint(self, endpoint: str) -> bool:
        return endpoint.split("?", 1)[0].rstrip("/").endswith(
            self._tokens.refresh_endpoint.rstrip("/")
        )

    async def _recover_unauthorized(self, endpoint: str, attempt: int) -> None:
        """Refresh so the caller can retry, or expire the session."""
        if attempt >= 1:
            raise self._expire_session(
                f"{endpoint} still unauthorized after a token refresh."
            )

        self._logger.info("401 from %s; refreshing access token.", endpoint)
        try:
            await self._tokens.refresh_access_token()
        except ClientError as exc:
            raise self._expire_session(f"Token refresh failed: {exc}") from exc

    def _expire_session(self, reason: str) -> SessionExpired:
        self._tokens.clear_tokens()
        self._logger.warning(reason, extra={"event": "SESSION_EXPIRED"})
        self._broadcaster.notify()
        return SessionExpired()

    def _classify_error(
        self,
        endpoint: str,
        response: httpx.Response,
        authenticated: bool,
    ) -> ClientError:
        data = self._parse_error_body(response)
        message = self._error_message(data, response.status_code)

        if authenticated and self._mentions_invalid_session(message):
            return self._expire_session(
                f"{endpoint} reported an invalid session "
                f"(status {response.status_code})."
            )

        code = data.get("code")
        self._logger.debug(
            "%s failed with status %d: %s", endpoint, response.status_code, message,
        )
        return RequestError(
            message,
            status=response.status_code,
            error_code=str(code) if code is not None else None,
            data=data,
        )

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_message(data: dict[str, Any], status: int) -> str:
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        message = error or data.get("message")
        return str(message) if message else f"HTTP error! status: {status}"

    def _mentions_invalid_session(self, message: str) -> bool:
        lowered = message.lower()
        return any(phrase in lowered for phrase in self._invalid_phrases)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
