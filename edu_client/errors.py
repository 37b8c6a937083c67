"""
Client Error Taxonomy.

Every failure that leaves the request pipeline is one of the classes
below.  Each carries a ``ClientErrorCode`` so callers can branch on a
stable value instead of matching message text.

Hierarchy::

    ClientError (RuntimeError)
    ├── NetworkError        transport failure, no response received
    ├── SessionExpired      refresh impossible or failed (broadcast fired)
    ├── RequestError        any other non-2xx response
    ├── AuthRejected        2xx auth response with ``success: false``
    ├── GenerationFailed    explicit or malformed ``error`` stream frame
    ├── NoResult            stream closed without a ``complete`` frame
    ├── NoRefreshToken      refresh attempted with nothing to refresh
    └── RefreshFailed       refresh endpoint answered non-2xx
"""

from __future__ import annotations

from typing import Any, Optional

from edu_client.models.enums import ClientErrorCode


class ClientError(RuntimeError):
    """Base class for every error raised by the client pipeline."""

    code: ClientErrorCode = ClientErrorCode.REQUEST_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class NetworkError(ClientError):
    """The transport failed before any HTTP response arrived."""

    code = ClientErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str = "Network error. Please check your connection.",
    ) -> None:
        super().__init__(message)


class SessionExpired(ClientError):
    """The session cannot be salvaged; the user must sign in again."""

    code = ClientErrorCode.SESSION_EXPIRED
    status: int = 401

    def __init__(
        self,
        message: str = "Session expired. Please log in again.",
    ) -> None:
        super().__init__(message)


class RequestError(ClientError):
    """A non-2xx response that is not a session failure.

    Attributes
    ----------
    status:
        HTTP status code of the response.
    error_code:
        Machine-readable ``code`` field from the error body, if any.
    data:
        The parsed error body (``{}`` when it was not JSON).
    """

    code = ClientErrorCode.REQUEST_FAILED

    def __init__(
        self,
        message: str,
        status: int,
        error_code: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status: int = status
        self.error_code: Optional[str] = error_code
        self.data: dict[str, Any] = data if data is not None else {}


class AuthRejected(ClientError):
    """The backend answered an auth call with ``success: false``."""

    code = ClientErrorCode.AUTH_REJECTED


class GenerationFailed(ClientError):
    """The generation stream reported an error frame."""

    code = ClientErrorCode.GENERATION_FAILED

    def __init__(self, message: str = "Generation failed") -> None:
        super().__init__(message)


class NoResult(ClientError):
    """The generation stream closed without a ``complete`` frame."""

    code = ClientErrorCode.NO_RESULT

    def __init__(
        self,
        message: str = "No result received from generation",
    ) -> None:
        super().__init__(message)


class NoRefreshToken(ClientError):
    """A refresh was requested but no refresh token is available."""

    code = ClientErrorCode.NO_REFRESH_TOKEN

    def __init__(self, message: str = "No refresh token available") -> None:
        super().__init__(message)


class RefreshFailed(ClientError):
    """The refresh endpoint rejected the refresh token."""

    code = ClientErrorCode.REFRESH_FAILED

    def __init__(
        self,
        message: str = "Token refresh failed",
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status: Optional[int] = status
