"""
Teacher Backend API.

Thin, typed wrappers over the ``/api/teacher`` routes.  Every call goes
through ``ApiClient``; this module only knows route names, request
bodies and how auth responses hand over tokens.

Auth responses look like::

    {"success": true, "data": {"token": "...", "refreshToken": "...",
                               "teacher": {...}}}

Tokens are adopted only when ``success`` is true.  A 2xx auth response
with ``success: false`` raises ``AuthRejected``.
"""

from __future__ import annotations

from typing import Any, Optional

from edu_client.errors import AuthRejected
from edu_client.logger import StructuredLogger
from edu_client.models.auth_models import (
    QuotaInfo,
    TeacherProfile,
    TokenGrant,
    profile_from_payload,
    unwrap_envelope,
)
from edu_client.services.api_client import ApiClient
from edu_client.services.base_service import BaseService
from edu_client.services.event_stream import ProgressCallback, read_generation_stream
from edu_client.services.token_manager import TokenManager

_FULL_LESSON_STREAM: str = "/content/generate/full-lesson"
_FULL_LESSON_SYNC: str = "/content/generate/full-lesson-sync"


class TeacherApi(BaseService):
    """Route-level client for the teacher backend.

    Parameters
    ----------
    api:
        Authenticated request executor.
    tokens:
        Shared token manager; auth calls store the tokens they receive.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        api: ApiClient,
        tokens: TokenManager,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._api: ApiClient = api
        self._tokens: TokenManager = tokens

    # ------------------------------------------------------------------
    # Account lifecycle (public routes)
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create an account.  The backend then emails a verification code."""
        body = await self._api.post(
            "/auth/signup",
            {
                "email": email,
                "password": password,
                "firstName": first_name,
                "lastName": last_name,
            },
            authenticated=False,
        )
        data = self._accept(body, "Sign up failed")
        self._adopt_tokens(data)
        self._logger.info(
            "Teacher account registered.",
            extra={"event": "REGISTER_SUCCESS", "email": email},
        )
        return data

    async def sign_in(self, email: str, password: str) -> dict[str, Any]:
        body = await self._api.post(
            "/auth/login",
            {"email": email, "password": password},
            authenticated=False,
        )
        data = self._accept(body, "Sign in failed")
        self._adopt_tokens(data)
        self._logger.info(
            "Teacher signed in.",
            extra={"event": "LOGIN_SUCCESS", "email": email},
        )
        return data

    async def google_sign_in(self, id_token: str) -> dict[str, Any]:
        """Sign in (or register) with a Google ID token."""
        body = await self._api.post(
            "/auth/google",
            {"idToken": id_token},
            authenticated=False,
        )
        data = self._accept(body, "Google sign in failed")
        self._adopt_tokens(data)
        self._logger.info(
            "Teacher signed in with Google.",
            extra={"event": "LOGIN_SUCCESS", "provider": "google"},
        )
        return data

    async def verify_email(self, email: str, code: str) -> dict[str, Any]:
        body = await self._api.post(
            "/auth/verify-email",
            {"email": email, "code": code},
            authenticated=False,
        )
        data = self._accept(body, "Email verification failed")
        self._adopt_tokens(data)
        self._logger.info(
            "Email address verified.",
            extra={"event": "EMAIL_VERIFIED", "email": email},
        )
        return data

    async def resend_verification_email(self, email: str) -> Any:
        return await self._api.post(
            "/auth/resend-verification", {"email": email}, authenticated=False,
        )

    async def request_password_reset(self, email: str) -> Any:
        self._logger.info(
            "Password reset requested.",
            extra={"event": "PASSWORD_RESET_REQUESTED", "email": email},
        )
        return await self._api.post(
            "/auth/forgot-password", {"email": email}, authenticated=False,
        )

    async def verify_reset_code(self, email: str, code: str) -> Any:
        return await self._api.post(
            "/auth/verify-reset-code",
            {"email": email, "code": code},
            authenticated=False,
        )

    async def reset_password(self, email: str, new_password: str) -> Any:
        return await self._api.post(
            "/auth/reset-password",
            {"email": email, "newPassword": new_password},
            authenticated=False,
        )

    # ------------------------------------------------------------------
    # Authenticated account routes
    # ------------------------------------------------------------------

    async def logout(self) -> None:
        """Revoke the refresh token server-side, then forget both tokens.

        The local tokens are cleared even when the backend call raises;
        the exception still propagates.
        """
        refresh_token = self._tokens.get_refresh_token()
        try:
            await self._api.post("/auth/logout", {"refreshToken": refresh_token})
        finally:
            self._tokens.clear_tokens()
            self._logger.info("Local tokens cleared.", extra={"event": "LOGOUT"})

    async def get_current_teacher(self) -> Optional[TeacherProfile]:
        """Return the profile of the token holder.

        ``None`` when the response carries no ``teacher`` object.
        """
        body = await self._api.get("/auth/me")
        return profile_from_payload(unwrap_envelope(body))

    async def update_profile(self, changes: dict[str, Any]) -> Any:
        return await self._api.patch("/auth/profile", changes)

    async def change_password(self, current_password: str, new_password: str) -> Any:
        return await self._api.post(
            "/auth/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def get_quota(self) -> QuotaInfo:
        body = await self._api.get("/quota")
        return QuotaInfo.model_validate(unwrap_envelope(body))

    async def get_usage_stats(self, period: str = "month") -> Any:
        return await self._api.get("/quota/usage", params={"period": period})

    async def check_quota(self, operation: str, tokens: Optional[int] = None) -> Any:
        params: dict[str, Any] = {"operation": operation}
        if tokens:
            params["tokens"] = tokens
        return await self._api.get("/quota/check", params=params)

    # ------------------------------------------------------------------
    # Lesson generation
    # ------------------------------------------------------------------

    async def generate_full_lesson(
        self,
        data: dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        """Generate a full lesson over the progress event stream.

        Parameters
        ----------
        data:
            Lesson generation options, forwarded as the JSON body.
        on_progress:
            Receives a ``GenerationProgress`` for every progress frame.

        Returns
        -------
        Any
            The payload of the ``complete`` frame.

        Raises
        ------
        GenerationFailed, NoResult, NetworkError, SessionExpired, RequestError
        """
        async with self._api.stream(_FULL_LESSON_STREAM, json=data) as response:
            result = await read_generation_stream(
                response.aiter_bytes(),
                on_progress=on_progress,
                logger=self._logger,
            )
        self._logger.info(
            "Full lesson generated.", extra={"event": "LESSON_GENERATED"},
        )
        return result

    async def generate_full_lesson_sync(self, data: dict[str, Any]) -> Any:
        """Non-streaming variant for environments that cannot hold a stream open."""
        return await self._api.post(_FULL_LESSON_SYNC, data)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _accept(body: Any, fallback: str) -> dict[str, Any]:
        """Return the unwrapped payload of a successful auth response."""
        if not isinstance(body, dict) or not body.get("success"):
            message = None
            if isinstance(body, dict):
                message = body.get("error") or body.get("message")
            raise AuthRejected(str(message) if message else fallback)
        data = unwrap_envelope(body)
        return data if isinstance(data, dict) else {}

    def _adopt_tokens(self, data: dict[str, Any]) -> None:
        grant = TokenGrant.model_validate(data)
        if grant.token:
            self._tokens.set_tokens(
                access_token=grant.token,
                refresh_token=grant.refresh_token,
            )
