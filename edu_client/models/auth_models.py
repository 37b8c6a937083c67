"""
Authentication Pipeline Models.

Pydantic models for the credential, profile and result contracts
between ``TeacherApi``, ``AuthSession`` and their callers.

The backend speaks camelCase JSON; every model accepts the wire alias
and the snake_case field name alike.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from edu_client.models.enums import SessionState

_DEFAULT_TIER: str = "FREE"
_DEFAULT_MONTHLY_QUOTA: int = 100_000


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class CredentialPair(BaseModel):
    """Access / refresh token pair.

    A refresh token may exist without an access token (for example after
    a restart, before bootstrap completes), never the other way round in
    a consistent state.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None


class TokenGrant(BaseModel):
    """Token fields of a login / refresh response body.

    ``refresh_token`` is optional because the backend may keep rotation
    disabled and answer a refresh with only a new access token.
    """

    token: Optional[str] = None
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Profile & quota
# ---------------------------------------------------------------------------

class TeacherProfile(BaseModel):
    """The signed-in teacher as returned by ``/auth/me`` and login calls.

    Unknown backend fields are kept so that callers can reach them
    without a model change.
    """

    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email_verified: bool = Field(default=False, alias="emailVerified")
    subscription_tier: Optional[str] = Field(default=None, alias="subscriptionTier")
    monthly_token_quota: Optional[int] = Field(default=None, alias="monthlyTokenQuota")
    current_month_usage: Optional[int] = Field(default=None, alias="currentMonthUsage")
    quota_reset_date: Optional[str] = Field(default=None, alias="quotaResetDate")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def merged(self, changes: dict[str, Any]) -> "TeacherProfile":
        """Return a copy with *changes* (wire or field names) applied."""
        aliases: dict[str, str] = {
            name: info.alias or name
            for name, info in TeacherProfile.model_fields.items()
        }
        data: dict[str, Any] = self.model_dump(by_alias=True)
        for key, value in changes.items():
            data[aliases.get(key, key)] = value
        return TeacherProfile.model_validate(data)


class QuotaInfo(BaseModel):
    """Usage quota snapshot.  The shape is owned by the backend."""

    model_config = ConfigDict(extra="allow")


class SubscriptionInfo(BaseModel):
    """Tier summary derived from the profile."""

    tier: str = _DEFAULT_TIER
    monthly_quota: int = _DEFAULT_MONTHLY_QUOTA
    current_usage: int = 0
    quota_reset_date: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_profile(cls, profile: TeacherProfile) -> "SubscriptionInfo":
        return cls(
            tier=profile.subscription_tier or _DEFAULT_TIER,
            monthly_quota=profile.monthly_token_quota or _DEFAULT_MONTHLY_QUOTA,
            current_usage=profile.current_month_usage or 0,
            quota_reset_date=profile.quota_reset_date,
        )


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Successful outcome of a sign-in, sign-up or verification call.

    Failures are raised as ``ClientError`` subclasses instead of being
    folded into this model.

    Attributes
    ----------
    success:
        Always ``True`` for a returned result.
    teacher:
        The profile adopted by the session, when the backend sent one.
    requires_email_verification:
        ``True`` after a sign-up that did not start a session.
    is_new_user:
        ``True`` when a Google sign-in created the account.
    """

    success: bool = True
    teacher: Optional[TeacherProfile] = None
    requires_email_verification: bool = False
    is_new_user: bool = False


class SessionSnapshot(BaseModel):
    """Immutable view of ``AuthSession`` handed to state listeners."""

    state: SessionState
    teacher: Optional[TeacherProfile] = None
    quota: Optional[QuotaInfo] = None
    is_loading: bool = False
    is_initialized: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_authenticated(self) -> bool:
        return self.teacher is not None


def profile_from_payload(payload: Any) -> Optional[TeacherProfile]:
    """Extract the ``teacher`` object of an unwrapped payload, if any."""
    if not isinstance(payload, dict):
        return None
    teacher = payload.get("teacher")
    if not isinstance(teacher, dict):
        return None
    return TeacherProfile.model_validate(teacher)


def unwrap_envelope(payload: Any) -> Any:
    """Strip the backend's ``{"success": ..., "data": {...}}`` envelope.

    Bodies without a truthy ``data`` member are returned unchanged.
    """
    if isinstance(payload, dict) and payload.get("data"):
        return payload["data"]
    return payload
