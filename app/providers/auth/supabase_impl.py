"""
Supabase Auth Provider implementation.

Client context drives one end-user session through the supabase-py
async auth client. Server context verifies access tokens with the
service-role client. Supabase has no separate session-cookie format:
the verified access token is the cookie value and its ``exp`` claim
bounds the session.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Optional

from supabase_auth.errors import AuthError as SupabaseAuthError

from ...config import get_logger
from ...exceptions import AuthError
from ..context import ExecutionContext, require_context
from .interface import (
    AuthProviderInterface,
    AuthStateCallback,
    AuthUser,
    DecodedToken,
    Unsubscribe,
    UserProfileUpdate,
)

logger = get_logger("auth.supabase")


@asynccontextmanager
async def _auth_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise Supabase auth errors as AuthError, keeping the vendor code."""
    try:
        yield
    except SupabaseAuthError as e:
        logger.warning("Supabase %s failed | code=%s | error=%s", operation, e.code, e.message)
        raise AuthError(
            f"{operation} failed: {e.message}",
            error_code=(e.code or "AUTH_ERROR").upper(),
        ) from e


class SupabaseAuthProvider(AuthProviderInterface):
    """Supabase Auth adapter for either execution context."""

    def __init__(self, client: Any, context: ExecutionContext) -> None:
        super().__init__(context)
        self._client = client
        self._current_user: Optional[AuthUser] = None
        self._subscription = None
        if context is ExecutionContext.CLIENT:
            self._subscription = client.auth.on_auth_state_change(self._track_session)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _track_session(self, event: str, session: Any) -> None:
        self._current_user = self._to_auth_user(session.user) if session and session.user else None
        logger.debug("Auth state event | %s | signed_in=%s", event, self._current_user is not None)

    async def _get_id_token(self, force_refresh: bool = False) -> str:
        async with _auth_errors("get_id_token"):
            if force_refresh:
                response = await self._client.auth.refresh_session()
                session = response.session
            else:
                session = await self._client.auth.get_session()
        if session is None:
            raise AuthError("No active session", error_code="NO_SESSION")
        return session.access_token

    def _to_auth_user(self, user: Any) -> AuthUser:
        metadata = user.user_metadata or {}
        return AuthUser(
            uid=user.id,
            email=user.email,
            email_verified=user.email_confirmed_at is not None,
            display_name=metadata.get("display_name") or metadata.get("name"),
            photo_url=metadata.get("avatar_url") or metadata.get("photo_url"),
            _token_getter=self._get_id_token,
        )

    async def _verify(self, token: str, operation: str) -> DecodedToken:
        require_context(self.context, ExecutionContext.SERVER, operation)
        if not token:
            raise AuthError(f"{operation} failed: empty token", error_code="INVALID_TOKEN")
        async with _auth_errors(operation):
            response = await self._client.auth.get_user(token)
        if response is None or response.user is None:
            raise AuthError(f"{operation} failed: invalid token", error_code="INVALID_TOKEN")
        user = response.user
        return DecodedToken(
            uid=user.id,
            email=user.email,
            email_verified=user.email_confirmed_at is not None,
            claims={
                "role": user.role,
                "app_metadata": user.app_metadata,
                "user_metadata": user.user_metadata,
            },
        )

    # =========================================================================
    # Client Session
    # =========================================================================

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Unsubscribe:
        require_context(self.context, ExecutionContext.CLIENT, "on_auth_state_changed")

        def relay(event: str, session: Any) -> None:
            callback(self._to_auth_user(session.user) if session and session.user else None)

        callback(self._current_user)
        subscription = self._client.auth.on_auth_state_change(relay)
        return subscription.unsubscribe

    async def sign_in_with_email_and_password(self, email: str, password: str) -> AuthUser:
        require_context(self.context, ExecutionContext.CLIENT, "sign_in_with_email_and_password")
        async with _auth_errors("Sign in"):
            response = await self._client.auth.sign_in_with_password({"email": email, "password": password})
        if response.user is None:
            raise AuthError("Sign in failed: no user returned")
        self._current_user = self._to_auth_user(response.user)
        logger.info("Signed in | uid=%s", self._current_user.uid)
        return self._current_user

    async def create_user_with_email_and_password(self, email: str, password: str) -> AuthUser:
        require_context(self.context, ExecutionContext.CLIENT, "create_user_with_email_and_password")
        async with _auth_errors("Sign up"):
            response = await self._client.auth.sign_up({"email": email, "password": password})
        if response.user is None:
            raise AuthError("Sign up failed: no user returned")
        user = self._to_auth_user(response.user)
        # With email confirmation enabled no session is issued until the link is followed
        if response.session is not None:
            self._current_user = user
        logger.info("User created | uid=%s | session=%s", user.uid, response.session is not None)
        return user

    async def send_email_verification(self, user: AuthUser) -> None:
        require_context(self.context, ExecutionContext.CLIENT, "send_email_verification")
        if not user.email:
            raise AuthError("Cannot send verification to a user without email", status_code=400)
        async with _auth_errors("Send verification email"):
            await self._client.auth.resend({"type": "signup", "email": user.email})

    async def apply_action_code(self, code: str) -> None:
        require_context(self.context, ExecutionContext.CLIENT, "apply_action_code")
        async with _auth_errors("Email verification"):
            response = await self._client.auth.verify_otp({"token_hash": code, "type": "email"})
        if response.user is not None:
            self._current_user = self._to_auth_user(response.user)

    async def update_profile(self, user: AuthUser, profile: UserProfileUpdate) -> None:
        require_context(self.context, ExecutionContext.CLIENT, "update_profile")
        if profile.is_empty():
            return
        data: dict[str, Any] = {}
        if profile.display_name is not None:
            data["display_name"] = profile.display_name
        if profile.photo_url is not None:
            data["avatar_url"] = profile.photo_url
        async with _auth_errors("Update profile"):
            await self._client.auth.update_user({"data": data})
        if profile.display_name is not None:
            user.display_name = profile.display_name
        if profile.photo_url is not None:
            user.photo_url = profile.photo_url

    async def sign_out(self) -> None:
        require_context(self.context, ExecutionContext.CLIENT, "sign_out")
        async with _auth_errors("Sign out"):
            await self._client.auth.sign_out()
        self._current_user = None

    def get_current_user(self) -> Optional[AuthUser]:
        require_context(self.context, ExecutionContext.CLIENT, "get_current_user")
        return self._current_user

    # =========================================================================
    # Server Verification
    # =========================================================================

    async def verify_id_token(self, token: str) -> DecodedToken:
        return await self._verify(token, "verify_id_token")

    async def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        await self._verify(id_token, "create_session_cookie")
        return id_token

    async def verify_session_cookie(self, session_cookie: str) -> DecodedToken:
        return await self._verify(session_cookie, "verify_session_cookie")

    def get_auth_instance(self) -> Any:
        return self._client.auth

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
