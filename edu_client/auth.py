"""
Authentication & Session State.

Provides ``AuthSession``, the consumer-facing state machine that
composes the token manager, the teacher API and the session-expiry
broadcaster::

    UNINITIALIZED ──bootstrap()──► BOOTSTRAPPING ──► AUTHENTICATED
                                                └──► UNAUTHENTICATED

``AUTHENTICATED`` is further qualified by ``needs_email_verification``.
Profile and quota are fetched and fail independently: a failed quota
fetch is logged and never downgrades authentication.

Usage::

    session = services["auth_session"]
    await session.bootstrap()
    if not session.is_authenticated:
        await session.sign_in("teacher@example.com", "secret")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional

from edu_client.errors import AuthRejected, ClientError
from edu_client.logger import StructuredLogger
from edu_client.models.auth_models import (
    AuthResult,
    QuotaInfo,
    SessionSnapshot,
    SubscriptionInfo,
    TeacherProfile,
    profile_from_payload,
)
from edu_client.models.enums import SessionState

if TYPE_CHECKING:
    from edu_client.services.session_events import SessionExpiryBroadcaster
    from edu_client.services.teacher_api import TeacherApi
    from edu_client.services.token_manager import TokenManager

SessionListener = Callable[[SessionSnapshot], None]

# Failures that end a single auth step; pydantic's ValidationError is a
# ValueError and covers malformed profile / quota bodies.
_STEP_ERRORS: tuple[type[Exception], ...] = (ClientError, ValueError)


class AuthSession:
    """Injectable holder of the signed-in teacher and its quota.

    One instance is shared by every consumer.  It subscribes to the
    broadcaster at construction and drops to ``UNAUTHENTICATED``
    whenever any call reports an unrecoverable session, regardless of
    which operation was in flight.

    Parameters
    ----------
    api:
        Route-level backend client.
    tokens:
        Shared token manager.
    broadcaster:
        Session-expiry hub; the session registers itself as an observer.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        api: TeacherApi,
        tokens: TokenManager,
        broadcaster: SessionExpiryBroadcaster,
        logger: StructuredLogger,
    ) -> None:
        self._api: TeacherApi = api
        self._tokens: TokenManager = tokens
        self._logger: StructuredLogger = logger

        self._state: SessionState = SessionState.UNINITIALIZED
        self._teacher: Optional[TeacherProfile] = None
        self._quota: Optional[QuotaInfo] = None
        self._is_loading: bool = False
        self._is_initialized: bool = False
        self._error: Optional[str] = None
        self._listeners: list[SessionListener] = []

        self._unsubscribe_expiry: Callable[[], None] = broadcaster.subscribe(
            self._on_session_expired
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def teacher(self) -> Optional[TeacherProfile]:
        return self._teacher

    @property
    def quota(self) -> Optional[QuotaInfo]:
        return self._quota

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_authenticated(self) -> bool:
        return self._teacher is not None

    @property
    def needs_email_verification(self) -> bool:
        return self._teacher is not None and not self._teacher.email_verified

    @property
    def is_ready(self) -> bool:
        return not self._is_loading and self._is_initialized

    @property
    def subscription_info(self) -> Optional[SubscriptionInfo]:
        if self._teacher is None:
            return None
        return SubscriptionInfo.from_profile(self._teacher)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            teacher=self._teacher,
            quota=self._quota,
            is_loading=self._is_loading,
            is_initialized=self._is_initialized,
            error=self._error,
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call *listener* with a snapshot after every state change.

        Returns a function that removes the listener.
        """
        if listener not in self._listeners:
            self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def close(self) -> None:
        """Detach from the broadcaster and drop all listeners."""
        self._unsubscribe_expiry()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(self) -> SessionState:
        """Restore the session from persisted tokens.

        1. No tokens at all → ``UNAUTHENTICATED`` without a network call.
        2. Access token → fetch the profile.
        3. Step 2 failed, or only a refresh token exists → one refresh,
           then fetch the profile again.
        4. Step 3 failed → clear tokens, ``UNAUTHENTICATED``.

        A restored session then fetches its quota on a best-effort basis.
        """
        self._state = SessionState.BOOTSTRAPPING
        self._is_loading = True
        self._notify()

        try:
            has_access = self._tokens.initialize()
            if not has_access and not self._tokens.get_refresh_token():
                self._logger.info("No stored credentials; sign-in required.")
                self._state = SessionState.UNAUTHENTICATED
                return self._state

            profile: Optional[TeacherProfile] = None
            if has_access:
                profile = await self._try_fetch_profile()

            if profile is None and self._tokens.get_refresh_token():
                profile = await self._try_refresh_and_fetch_profile()

            if profile is None:
                self._tokens.clear_tokens()
                self._teacher = None
                self._quota = None
                self._state = SessionState.UNAUTHENTICATED
                return self._state

            self._adopt_profile(profile)
            self._logger.info(
                "Session restored.",
                extra={"event": "SESSION_RESTORED", "teacher_id": profile.id},
            )
            await self._refresh_quota_quietly()
            return self._state
        finally:
            self._is_loading = False
            self._is_initialized = True
            self._notify()

    async def _try_fetch_profile(self) -> Optional[TeacherProfile]:
        try:
            return await self._api.get_current_teacher()
        except _STEP_ERRORS as exc:
            self._logger.info("Stored access token rejected (%s); trying refresh.", exc)
            return None

    async def _try_refresh_and_fetch_profile(self) -> Optional[TeacherProfile]:
        try:
            await self._tokens.refresh_access_token()
            return await self._api.get_current_teacher()
        except _STEP_ERRORS as exc:
            self._logger.warning(
                "Session restore failed after refresh: %s", exc,
                extra={"event": "SESSION_RESTORE_FAILED"},
            )
            return None

    # ------------------------------------------------------------------
    # Sign-in family
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password.

        Raises
        ------
        ClientError
            Any failure; the message is also recorded in :attr:`error`.
        """
        self._begin()
        try:
            data = await self._api.sign_in(email, password)
            profile = await self._profile_or_fetch(data)
            self._adopt_profile(profile)
            await self._refresh_quota_quietly()
            return AuthResult(teacher=profile)
        except ClientError as exc:
            self._error = exc.message
            raise
        except ValueError as exc:
            raise self._reject_malformed(exc) from exc
        finally:
            self._end()

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> AuthResult:
        """Register an account.

        The backend normally answers without starting a session and sends
        a verification code; the result then reports
        ``requires_email_verification``.  If the response does carry a
        profile and tokens, the session is started right away.
        """
        self._begin()
        try:
            data = await self._api.sign_up(email, password, first_name, last_name)
            profile = profile_from_payload(data)
            if profile is None or not self._tokens.is_authenticated:
                return AuthResult(requires_email_verification=True)

            self._adopt_profile(profile)
            await self._refresh_quota_quietly()
            return AuthResult(
                teacher=profile,
                requires_email_verification=not profile.email_verified,
            )
        except ClientError as exc:
            self._error = exc.message
            raise
        except ValueError as exc:
            raise self._reject_malformed(exc) from exc
        finally:
            self._end()

    async def google_sign_in(self, id_token: str) -> AuthResult:
        """Sign in with a Google ID token.

        A quota object included in the response is used directly instead
        of a separate quota fetch.
        """
        self._begin()
        try:
            data = await self._api.google_sign_in(id_token)
            profile = await self._profile_or_fetch(data)
            self._adopt_profile(profile)

            quota = data.get("quota")
            if isinstance(quota, dict):
                self._quota = QuotaInfo.model_validate(quota)
            else:
                await self._refresh_quota_quietly()

            return AuthResult(
                teacher=profile,
                is_new_user=bool(data.get("isNewUser", False)),
            )
        except ClientError as exc:
            self._error = exc.message
            raise
        except ValueError as exc:
            raise self._reject_malformed(exc) from exc
        finally:
            self._end()

    async def verify_email(self, email: str, code: str) -> AuthResult:
        """Confirm the emailed code; a returned profile starts the session."""
        self._begin()
        try:
            data = await self._api.verify_email(email, code)
            profile = profile_from_payload(data)
            if profile is not None:
                self._adopt_profile(profile)
                await self._refresh_quota_quietly()
            return AuthResult(teacher=profile)
        except ClientError as exc:
            self._error = exc.message
            raise
        except ValueError as exc:
            raise self._reject_malformed(exc) from exc
        finally:
            self._end()

    # ------------------------------------------------------------------
    # Sign-out & refresh
    # ------------------------------------------------------------------

    async def sign_out(self) -> None:
        """Best-effort backend logout, then unconditionally reset locally."""
        try:
            await self._api.logout()
        except ClientError as exc:
            self._logger.warning(
                "Backend logout failed; clearing local session anyway: %s", exc,
                extra={"event": "LOGOUT_BACKEND_FAILED"},
            )
        finally:
            self._tokens.clear_tokens()
            self._teacher = None
            self._quota = None
            self._error = None
            self._state = SessionState.UNAUTHENTICATED
            self._notify()

    async def refresh_auth(self) -> Optional[TeacherProfile]:
        """Re-fetch profile and quota.  Failures are recorded in :attr:`error`."""
        try:
            profile = await self._api.get_current_teacher()
        except _STEP_ERRORS as exc:
            self._logger.warning("Refresh of the teacher profile failed: %s", exc)
            self._error = str(exc)
            self._notify()
            return None

        if profile is None:
            self._logger.warning("Profile response carried no teacher object.")
            return self._teacher

        self._adopt_profile(profile)
        await self._refresh_quota_quietly()
        self._notify()
        return profile

    async def refresh_quota(self) -> Optional[QuotaInfo]:
        """Re-fetch the quota.  A failure is logged and leaves it unchanged."""
        quota = await self._refresh_quota_quietly()
        self._notify()
        return quota

    async def update_profile(self, changes: dict[str, Any]) -> Any:
        """Send *changes* and merge them into the local profile on success."""
        body = await self._api.update_profile(changes)
        if isinstance(body, dict) and body.get("success") and self._teacher is not None:
            self._teacher = self._teacher.merged(changes)
            self._notify()
        return body

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _on_session_expired(self) -> None:
        if (
            self._state == SessionState.UNAUTHENTICATED
            and self._teacher is None
            and self._quota is None
        ):
            return
        self._logger.info(
            "Session expired; signing out locally.",
            extra={"event": "SESSION_EXPIRED"},
        )
        self._teacher = None
        self._quota = None
        self._state = SessionState.UNAUTHENTICATED
        self._notify()

    async def _profile_or_fetch(self, data: dict[str, Any]) -> TeacherProfile:
        profile = profile_from_payload(data)
        if profile is None:
            profile = await self._api.get_current_teacher()
        if profile is None:
            raise ClientError("Sign in response did not include a profile")
        return profile

    def _reject_malformed(self, exc: ValueError) -> AuthRejected:
        """Drop the tokens an unusable auth response just stored."""
        self._logger.warning(
            "Auth response could not be parsed: %s", exc,
            extra={"event": "AUTH_RESPONSE_INVALID"},
        )
        self._tokens.clear_tokens()
        self._teacher = None
        self._quota = None
        self._state = SessionState.UNAUTHENTICATED
        error = AuthRejected("Malformed profile")
        self._error = error.message
        return error

    def _adopt_profile(self, profile: TeacherProfile) -> None:
        self._teacher = profile
        self._error = None
        self._state = SessionState.AUTHENTICATED

    async def _refresh_quota_quietly(self) -> Optional[QuotaInfo]:
        try:
            self._quota = await self._api.get_quota()
        except _STEP_ERRORS as exc:
            self._logger.warning(
                "Failed to fetch quota: %s", exc,
                extra={"event": "QUOTA_FETCH_FAILED"},
            )
        return self._quota

    def _begin(self) -> None:
        self._is_loading = True
        self._error = None
        self._notify()

    def _end(self) -> None:
        self._is_loading = False
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._logger.error(
                    "Session listener %r raised.", listener, exc_info=True,
                )
