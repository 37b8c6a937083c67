from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from edu_client.models import CredentialPair, TeacherProfile, QuotaInfo
    from edu_client.models import SessionState, StreamEventKind
    from edu_client.models import GenerationProgress, StreamEvent
"""

from edu_client.models.enums import ClientErrorCode, SessionState, StreamEventKind
from edu_client.models.auth_models import (
    AuthResult,
    CredentialPair,
    QuotaInfo,
    SessionSnapshot,
    SubscriptionInfo,
    TeacherProfile,
    TokenGrant,
    profile_from_payload,
    unwrap_envelope,
)
from edu_client.models.generation import (
    CompleteEvent,
    ErrorEvent,
    GenerationProgress,
    ProgressEvent,
    StreamEvent,
)

__all__ = [
    "ClientErrorCode",
    "SessionState",
    "StreamEventKind",
    "AuthResult",
    "CredentialPair",
    "QuotaInfo",
    "SessionSnapshot",
    "SubscriptionInfo",
    "TeacherProfile",
    "TokenGrant",
    "profile_from_payload",
    "unwrap_envelope",
    "CompleteEvent",
    "ErrorEvent",
    "GenerationProgress",
    "ProgressEvent",
    "StreamEvent",
]
