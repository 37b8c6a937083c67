"""
Shared Enumerations for edu-client Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if event.kind == "progress"`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum


class SessionState(StrEnum):
    """Lifecycle states of ``AuthSession``.

    ``AUTHENTICATED`` is further qualified by the profile's
    ``email_verified`` flag; see ``AuthSession.needs_email_verification``.
    """

    UNINITIALIZED = "UNINITIALIZED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class StreamEventKind(StrEnum):
    """Event names understood on the lesson-generation stream."""

    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class ClientErrorCode(StrEnum):
    """Exhaustive enumeration of client failure categories.

    Every ``ClientError`` subclass pins one of these values so the
    calling layer can decide which feedback to display.
    """

    NETWORK_ERROR = "network_error"
    SESSION_EXPIRED = "session_expired"
    REQUEST_FAILED = "request_failed"
    AUTH_REJECTED = "auth_rejected"
    GENERATION_FAILED = "generation_failed"
    NO_RESULT = "no_result"
    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_FAILED = "refresh_failed"
