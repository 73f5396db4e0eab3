"""
Abstract interface for authentication providers.

All auth adapters must implement this interface so application code
never touches a vendor auth SDK directly.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from ...exceptions import AuthError
from ..context import ExecutionContext


TokenGetter = Callable[[bool], Awaitable[str]]


@dataclass
class AuthUser:
    """Normalized signed-in user, independent of the auth vendor."""
    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    _token_getter: Optional[TokenGetter] = field(default=None, repr=False, compare=False)

    async def get_id_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token for this user, refreshing it if needed."""
        if self._token_getter is None:
            raise AuthError(f"No token source attached to user {self.uid}", error_code="NO_SESSION")
        return await self._token_getter(force_refresh)


@dataclass
class UserProfileUpdate:
    """Profile fields that can be changed by the signed-in user."""
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

    def is_empty(self) -> bool:
        return self.display_name is None and self.photo_url is None


@dataclass
class DecodedToken:
    """Claims of a verified ID token or session cookie."""
    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    claims: dict[str, Any] = field(default_factory=dict)


AuthStateCallback = Callable[[Optional[AuthUser]], None]
Unsubscribe = Callable[[], None]


class AuthProviderInterface(ABC):
    """
    Abstract interface for authentication adapters.

    Client-context adapters manage one end-user session; server-context
    adapters verify tokens and mint session cookies. Calling a method
    from the wrong context raises ContextViolationError.
    """

    def __init__(self, context: ExecutionContext) -> None:
        self.context = context

    # -------------------------------------------------------------------------
    # Client session
    # -------------------------------------------------------------------------

    @abstractmethod
    def on_auth_state_changed(self, callback: AuthStateCallback) -> Unsubscribe:
        """
        Subscribe to sign-in / sign-out events.

        The callback is invoked immediately with the current user and on
        every subsequent change.

        Returns:
            Function that removes the subscription
        """
        pass

    @abstractmethod
    async def sign_in_with_email_and_password(self, email: str, password: str) -> AuthUser:
        """Sign in an existing user."""
        pass

    @abstractmethod
    async def create_user_with_email_and_password(self, email: str, password: str) -> AuthUser:
        """Create a user and sign them in."""
        pass

    @abstractmethod
    async def send_email_verification(self, user: AuthUser) -> None:
        """Send the verification email for ``user``."""
        pass

    @abstractmethod
    async def apply_action_code(self, code: str) -> None:
        """Apply an out-of-band code (email verification link)."""
        pass

    @abstractmethod
    async def update_profile(self, user: AuthUser, profile: UserProfileUpdate) -> None:
        """Update display name and/or photo URL."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    def get_current_user(self) -> Optional[AuthUser]:
        """Get the signed-in user without a network call."""
        pass

    # -------------------------------------------------------------------------
    # Server verification
    # -------------------------------------------------------------------------

    @abstractmethod
    async def verify_id_token(self, token: str) -> DecodedToken:
        """Verify a bearer ID token (server only)."""
        pass

    @abstractmethod
    async def create_session_cookie(self, id_token: str, expires_in: timedelta) -> str:
        """Exchange an ID token for a session cookie value (server only)."""
        pass

    @abstractmethod
    async def verify_session_cookie(self, session_cookie: str) -> DecodedToken:
        """Verify a session cookie value (server only)."""
        pass

    @abstractmethod
    def get_auth_instance(self) -> Any:
        """Get the underlying vendor auth handle."""
        pass
