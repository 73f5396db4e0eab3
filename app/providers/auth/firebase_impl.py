"""
Firebase Auth Provider implementation.

Client context talks to the Identity Toolkit and Secure Token REST APIs
through aiohttp and keeps the signed-in user's tokens in a
FirebaseClientSession. Server context uses the firebase_admin SDK; its
calls block on HTTP, so they run in a worker thread.
"""
from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import aiohttp
from firebase_admin import auth as admin_auth
from firebase_admin.exceptions import FirebaseError

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

logger = get_logger("auth.firebase")

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Refresh the ID token this long before it expires
TOKEN_REFRESH_MARGIN_SECONDS = 300

TokenListener = Callable[[Optional[str]], None]


class FirebaseClientSession:
    """
    Signed-in state of one end user against the Firebase REST APIs.

    Holds the ID / refresh token pair, refreshes the ID token ahead of
    expiry, and notifies two kinds of listeners:
    - auth-state listeners on sign-in and sign-out
    - token listeners whenever the ID token changes (used to rebuild
      Firestore clients with the new credentials)
    """

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 15.0,
        http: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._http = http
        self._owns_http = http is None
        self._user: Optional[AuthUser] = None
        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at = 0.0
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_lock = asyncio.Lock()
        self._auth_listeners: dict[int, AuthStateCallback] = {}
        self._token_listeners: list[TokenListener] = []
        self._next_listener_id = 0

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True
        return self._http

    async def post(self, url: str, *, json: Optional[dict[str, Any]] = None,
                   data: Optional[dict[str, str]] = None, operation: str) -> dict[str, Any]:
        """POST to a Google REST endpoint and translate error payloads to AuthError."""
        try:
            async with self.http.post(url, params={"key": self.api_key}, json=json, data=data) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    raise self._rest_error(operation, response.status, body)
                return body or {}
        except aiohttp.ClientError as e:
            logger.warning("Firebase %s request failed: %s", operation, e)
            raise AuthError(f"{operation} failed: {e}", status_code=503, error_code="NETWORK_ERROR") from e

    @staticmethod
    def _rest_error(operation: str, status: int, body: Any) -> AuthError:
        error = (body or {}).get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            message = str(error.get("message", "UNKNOWN"))
        else:
            # Secure Token endpoint answers {"error": "invalid_grant", ...}
            message = str(error or "UNKNOWN")
        code, _, detail = message.partition(" : ")
        logger.warning("Firebase %s rejected | status=%s | code=%s", operation, status, code)
        return AuthError(
            f"{operation} failed: {detail or code}",
            status_code=400 if status == 400 and code in ("EMAIL_EXISTS", "WEAK_PASSWORD", "INVALID_EMAIL") else 401,
            error_code=code.upper(),
        )

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_auth_listener(self, callback: AuthStateCallback) -> Unsubscribe:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._auth_listeners[listener_id] = callback

        def unsubscribe() -> None:
            self._auth_listeners.pop(listener_id, None)

        return unsubscribe

    def add_token_listener(self, callback: TokenListener) -> None:
        self._token_listeners.append(callback)

    def _notify_auth(self) -> None:
        for callback in list(self._auth_listeners.values()):
            try:
                callback(self._user)
            except Exception as exc:
                logger.error("Auth state listener failed: %s", exc, exc_info=True)

    def _notify_token(self) -> None:
        for callback in self._token_listeners:
            callback(self._id_token)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._user

    def _store_tokens(self, id_token: str, refresh_token: str, expires_in: Any) -> None:
        self._id_token = id_token
        self._refresh_token = refresh_token
        self._expires_at = time.monotonic() + float(expires_in or 3600)
        self._notify_token()
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self._refresh_task is not None and self._refresh_task is not asyncio.current_task():
            self._refresh_task.cancel()
        delay = max(self._expires_at - time.monotonic() - TOKEN_REFRESH_MARGIN_SECONDS, 0)

        async def refresh_later() -> None:
            await asyncio.sleep(delay)
            try:
                await self.get_id_token(force_refresh=True)
            except AuthError as e:
                logger.warning("Background token refresh failed: %s", e.message)

        try:
            self._refresh_task = asyncio.get_running_loop().create_task(refresh_later())
        except RuntimeError:
            self._refresh_task = None

    def _user_from_record(self, record: dict[str, Any]) -> AuthUser:
        return AuthUser(
            uid=record["localId"],
            email=record.get("email"),
            email_verified=bool(record.get("emailVerified", False)),
            display_name=record.get("displayName") or None,
            photo_url=record.get("photoUrl") or None,
            _token_getter=self.get_id_token,
        )

    async def lookup(self) -> AuthUser:
        """Reload the signed-in user's profile."""
        token = await self.get_id_token()
        body = await self.post(f"{IDENTITY_TOOLKIT_URL}/accounts:lookup", json={"idToken": token}, operation="Lookup")
        users = body.get("users") or []
        if not users:
            raise AuthError("Lookup failed: user not found", error_code="USER_NOT_FOUND")
        self._user = self._user_from_record(users[0])
        return self._user

    async def start(self, endpoint: str, email: str, password: str, operation: str) -> AuthUser:
        body = await self.post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:{endpoint}",
            json={"email": email, "password": password, "returnSecureToken": True},
            operation=operation,
        )
        self._store_tokens(body["idToken"], body["refreshToken"], body.get("expiresIn"))
        user = await self.lookup()
        logger.info("%s succeeded | uid=%s", operation, user.uid)
        self._notify_auth()
        return user

    async def get_id_token(self, force_refresh: bool = False) -> str:
        if self._refresh_token is None:
            raise AuthError("No signed-in user", error_code="NO_SESSION")
        async with self._refresh_lock:
            expired = time.monotonic() >= self._expires_at - 60
            if force_refresh or expired or self._id_token is None:
                body = await self.post(
                    SECURE_TOKEN_URL,
                    data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
                    operation="Token refresh",
                )
                self._store_tokens(body["id_token"], body["refresh_token"], body.get("expires_in"))
                logger.debug("ID token refreshed")
        return self._id_token

    def apply_user_update(self, record: dict[str, Any]) -> None:
        """Merge fields returned by accounts:update into the cached user."""
        if self._user is None:
            return
        if "displayName" in record:
            self._user.display_name = record["displayName"] or None
        if "photoUrl" in record:
            self._user.photo_url = record["photoUrl"] or None
        if "emailVerified" in record:
            self._user.email_verified = bool(record["emailVerified"])
        if record.get("idToken") and record.get("refreshToken"):
            self._store_tokens(record["idToken"], record["refreshToken"], record.get("expiresIn"))

    def clear(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None
        was_signed_in = self._user is not None
        self._user = None
        self._id_token = None
        self._refresh_token = None
        self._expires_at = 0.0
        self._notify_token()
        if was_signed_in:
            self._notify_auth()

    async def close(self) -> None:
        self.clear()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None


class FirebaseAuthProvider(AuthProviderInterface):
    """
    Firebase Auth adapter.

    Client context requires ``session``; server context requires the
    initialized firebase_admin ``app``.
    """

    def __init__(
        self,
        context: ExecutionContext,
        session: Optional[FirebaseClientSession] = None,
        app: Any = None,
    ) -> None:
        super().__init__(context)
        self._session = session
        self._app = app

    def _client_session(self, operation: str) -> FirebaseClientSession:
        require_context(self.context, ExecutionContext.CLIENT, operation)
        if self._session is None:
            raise AuthError(f"{operation}: no client session configured", status_code=500)
        return self._session

    async def _admin_call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        require_context(self.context, ExecutionContext.SERVER, operation)
        if not args or not args[0]:
            raise AuthError(f"{operation} failed: empty token", error_code="INVALID_TOKEN")
        try:
            return await asyncio.to_thread(fn, *args, app=self._app, **kwargs)
        except (FirebaseError, ValueError) as e:
            code = getattr(e, "code", None) or "INVALID_ARGUMENT"
            logger.warning("Firebase %s failed | code=%s | error=%s", operation, code, e)
            raise AuthError(f"{operation} failed: {e}", error_code=str(code).upper()) from e

    @staticmethod
    def _decoded(claims: dict[str, Any]) -> DecodedToken:
        return DecodedToken(
            uid=claims.get("uid") or claims["sub"],
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            claims=dict(claims),
        )

    # =========================================================================
    # Client Session
    # =========================================================================

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Unsubscribe:
        session = self._client_session("on_auth_state_changed")
        callback(session.current_user)
        return session.add_auth_listener(callback)

    async def sign_in_with_email_and_password(self, email: str, password: str) -> AuthUser:
        session = self._client_session("sign_in_with_email_and_password")
        return await session.start("signInWithPassword", email, password, "Sign in")

    async def create_user_with_email_and_password(self, email: str, password: str) -> AuthUser:
        session = self._client_session("create_user_with_email_and_password")
        return await session.start("signUp", email, password, "Sign up")

    async def send_email_verification(self, user: AuthUser) -> None:
        session = self._client_session("send_email_verification")
        token = await user.get_id_token()
        await session.post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:sendOobCode",
            json={"requestType": "VERIFY_EMAIL", "idToken": token},
            operation="Send verification email",
        )

    async def apply_action_code(self, code: str) -> None:
        session = self._client_session("apply_action_code")
        body = await session.post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:update",
            json={"oobCode": code},
            operation="Email verification",
        )
        session.apply_user_update(body)

    async def update_profile(self, user: AuthUser, profile: UserProfileUpdate) -> None:
        session = self._client_session("update_profile")
        if profile.is_empty():
            return
        payload: dict[str, Any] = {"idToken": await user.get_id_token(), "returnSecureToken": True}
        if profile.display_name is not None:
            payload["displayName"] = profile.display_name
        if profile.photo_url is not None:
            payload["photoUrl"] = profile.photo_url
        body = await session.post(f"{IDENTITY_TOOLKIT_URL}/accounts:update", json=payload, operation="Update profile")
        session.apply_user_update(body)
        if profile.display_name is not None:
            user.display_name = profile.display_name
        if profile.photo_url is not None:
            user.photo_url = profile.photo_url

    async def sign_out(self) -> None:
        session = self._client_session("sign_out")
        session.clear()
        logger.info("Signed out")

    def get_current_user(self) -> Optional[AuthUser]:
        return self._client_session("get_current_user").current_user

    # =========================================================================
    # Server Verification
    # =========================================================================

    async def verify_id_token(self, token: str) -> DecodedToken:
        claims = await self._admin_call("verify_id_token", admin_auth.verify_id_token, token)
        return self._decoded(claims)

    async def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        cookie = await self._admin_call(
            "create_session_cookie",
            admin_auth.create_session_cookie,
            id_token,
            expires_in=expires_in,
        )
        return cookie.decode("utf-8") if isinstance(cookie, bytes) else cookie

    async def verify_session_cookie(self, session_cookie: str) -> DecodedToken:
        claims = await self._admin_call(
            "verify_session_cookie",
            admin_auth.verify_session_cookie,
            session_cookie,
            check_revoked=True,
        )
        return self._decoded(claims)

    def get_auth_instance(self) -> Any:
        if self.context is ExecutionContext.SERVER:
            return admin_auth
        return self._session
