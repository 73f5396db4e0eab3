from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from supabase_auth.errors import AuthApiError

from app.exceptions import AuthError, ContextViolationError
from app.providers.auth.interface import AuthUser, UserProfileUpdate
from app.providers.auth.supabase_impl import SupabaseAuthProvider
from app.providers.context import ExecutionContext


def make_user(**overrides):
    fields = {
        "id": "uid-1",
        "email": "ada@example.com",
        "email_confirmed_at": "2024-01-01T00:00:00Z",
        "user_metadata": {"display_name": "Ada", "avatar_url": "https://img/ada.png"},
        "app_metadata": {"provider": "email"},
        "role": "authenticated",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def supabase():
    client = MagicMock()
    client.auth.on_auth_state_change = MagicMock(return_value=MagicMock())
    for method in (
        "get_session", "refresh_session", "get_user", "sign_in_with_password",
        "sign_up", "resend", "verify_otp", "update_user", "sign_out",
    ):
        setattr(client.auth, method, AsyncMock())
    return client


@pytest.fixture
def client_auth(supabase):
    return SupabaseAuthProvider(supabase, ExecutionContext.CLIENT)


@pytest.fixture
def server_auth(supabase):
    return SupabaseAuthProvider(supabase, ExecutionContext.SERVER)


class TestClientSession:
    @pytest.mark.asyncio
    async def test_sign_in(self, client_auth, supabase):
        supabase.auth.sign_in_with_password.return_value = SimpleNamespace(user=make_user(), session=MagicMock())

        user = await client_auth.sign_in_with_email_and_password("ada@example.com", "secret")

        supabase.auth.sign_in_with_password.assert_awaited_once_with(
            {"email": "ada@example.com", "password": "secret"}
        )
        assert user == AuthUser(
            uid="uid-1",
            email="ada@example.com",
            email_verified=True,
            display_name="Ada",
            photo_url="https://img/ada.png",
        )
        assert client_auth.get_current_user() is user

    @pytest.mark.asyncio
    async def test_sign_in_error_mapped(self, client_auth, supabase):
        supabase.auth.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )
        with pytest.raises(AuthError) as exc_info:
            await client_auth.sign_in_with_email_and_password("ada@example.com", "wrong")
        assert exc_info.value.error_code == "INVALID_CREDENTIALS"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_sign_up_without_session_keeps_signed_out(self, client_auth, supabase):
        supabase.auth.sign_up.return_value = SimpleNamespace(
            user=make_user(email_confirmed_at=None), session=None
        )
        user = await client_auth.create_user_with_email_and_password("ada@example.com", "secret")
        assert user.email_verified is False
        assert client_auth.get_current_user() is None

    @pytest.mark.asyncio
    async def test_id_token(self, client_auth, supabase):
        supabase.auth.sign_in_with_password.return_value = SimpleNamespace(user=make_user(), session=MagicMock())
        supabase.auth.get_session.return_value = SimpleNamespace(access_token="jwt-1")
        supabase.auth.refresh_session.return_value = SimpleNamespace(session=SimpleNamespace(access_token="jwt-2"))

        user = await client_auth.sign_in_with_email_and_password("ada@example.com", "secret")

        assert await user.get_id_token() == "jwt-1"
        assert await user.get_id_token(force_refresh=True) == "jwt-2"

    @pytest.mark.asyncio
    async def test_id_token_without_session(self, client_auth, supabase):
        supabase.auth.get_session.return_value = None
        with pytest.raises(AuthError) as exc_info:
            await client_auth._get_id_token()
        assert exc_info.value.error_code == "NO_SESSION"

    def test_state_listener_called_immediately(self, client_auth, supabase):
        seen = []
        subscription = MagicMock()
        supabase.auth.on_auth_state_change.return_value = subscription

        unsubscribe = client_auth.on_auth_state_changed(seen.append)

        assert seen == [None]
        relay = supabase.auth.on_auth_state_change.call_args.args[0]
        relay("SIGNED_IN", SimpleNamespace(user=make_user()))
        assert seen[-1].uid == "uid-1"
        relay("SIGNED_OUT", None)
        assert seen[-1] is None
        assert unsubscribe is subscription.unsubscribe

    def test_session_tracking(self, client_auth, supabase):
        track = supabase.auth.on_auth_state_change.call_args.args[0]
        track("SIGNED_IN", SimpleNamespace(user=make_user()))
        assert client_auth.get_current_user().uid == "uid-1"
        track("SIGNED_OUT", None)
        assert client_auth.get_current_user() is None

    @pytest.mark.asyncio
    async def test_email_verification(self, client_auth, supabase):
        await client_auth.send_email_verification(AuthUser(uid="uid-1", email="ada@example.com"))
        supabase.auth.resend.assert_awaited_once_with({"type": "signup", "email": "ada@example.com"})

        supabase.auth.verify_otp.return_value = SimpleNamespace(user=make_user())
        await client_auth.apply_action_code("hash-123")
        supabase.auth.verify_otp.assert_awaited_once_with({"token_hash": "hash-123", "type": "email"})
        assert client_auth.get_current_user().email_verified

    @pytest.mark.asyncio
    async def test_verification_needs_email(self, client_auth):
        with pytest.raises(AuthError) as exc_info:
            await client_auth.send_email_verification(AuthUser(uid="uid-1"))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_update_profile(self, client_auth, supabase):
        user = AuthUser(uid="uid-1")
        await client_auth.update_profile(user, UserProfileUpdate(display_name="Ada L."))

        supabase.auth.update_user.assert_awaited_once_with({"data": {"display_name": "Ada L."}})
        assert user.display_name == "Ada L."
        assert user.photo_url is None

    @pytest.mark.asyncio
    async def test_empty_profile_update_skipped(self, client_auth, supabase):
        await client_auth.update_profile(AuthUser(uid="uid-1"), UserProfileUpdate())
        supabase.auth.update_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sign_out(self, client_auth, supabase):
        client_auth._current_user = AuthUser(uid="uid-1")
        await client_auth.sign_out()
        supabase.auth.sign_out.assert_awaited_once()
        assert client_auth.get_current_user() is None

    def test_close_unsubscribes(self, client_auth, supabase):
        subscription = supabase.auth.on_auth_state_change.return_value
        client_auth.close()
        subscription.unsubscribe.assert_called_once()


class TestServerVerification:
    def test_server_does_not_track_sessions(self, server_auth, supabase):
        supabase.auth.on_auth_state_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_verify_id_token(self, server_auth, supabase):
        supabase.auth.get_user.return_value = SimpleNamespace(user=make_user())

        decoded = await server_auth.verify_id_token("jwt")

        supabase.auth.get_user.assert_awaited_once_with("jwt")
        assert decoded.uid == "uid-1"
        assert decoded.email_verified is True
        assert decoded.claims["role"] == "authenticated"

    @pytest.mark.asyncio
    async def test_invalid_token(self, server_auth, supabase):
        supabase.auth.get_user.return_value = None
        with pytest.raises(AuthError) as exc_info:
            await server_auth.verify_session_cookie("expired")
        assert exc_info.value.error_code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_empty_token(self, server_auth, supabase):
        with pytest.raises(AuthError):
            await server_auth.verify_id_token("")
        supabase.auth.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_cookie_is_verified_token(self, server_auth, supabase):
        supabase.auth.get_user.return_value = SimpleNamespace(user=make_user())
        cookie = await server_auth.create_session_cookie("jwt", timedelta(days=5))
        assert cookie == "jwt"


class TestContextGuards:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call",
        [
            lambda auth: auth.verify_id_token("jwt"),
            lambda auth: auth.verify_session_cookie("cookie"),
            lambda auth: auth.create_session_cookie("jwt", timedelta(days=1)),
        ],
    )
    async def test_server_methods_rejected_on_client(self, client_auth, supabase, call):
        with pytest.raises(ContextViolationError):
            await call(client_auth)
        supabase.auth.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call",
        [
            lambda auth: auth.sign_in_with_email_and_password("a@b.c", "pw"),
            lambda auth: auth.create_user_with_email_and_password("a@b.c", "pw"),
            lambda auth: auth.send_email_verification(AuthUser(uid="u", email="a@b.c")),
            lambda auth: auth.apply_action_code("code"),
            lambda auth: auth.update_profile(AuthUser(uid="u"), UserProfileUpdate(display_name="x")),
            lambda auth: auth.sign_out(),
        ],
    )
    async def test_client_methods_rejected_on_server(self, server_auth, call):
        with pytest.raises(ContextViolationError) as exc_info:
            await call(server_auth)
        assert exc_info.value.error_code == "CONTEXT_VIOLATION"

    def test_sync_client_methods_rejected_on_server(self, server_auth):
        with pytest.raises(ContextViolationError):
            server_auth.get_current_user()
        with pytest.raises(ContextViolationError):
            server_auth.on_auth_state_changed(lambda user: None)


class TestAuthUser:
    @pytest.mark.asyncio
    async def test_token_without_source(self):
        with pytest.raises(AuthError) as exc_info:
            await AuthUser(uid="uid-1").get_id_token()
        assert exc_info.value.error_code == "NO_SESSION"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_from_source(self):
        getter = AsyncMock(return_value="jwt")
        assert await AuthUser(uid="uid-1", _token_getter=getter).get_id_token(force_refresh=True) == "jwt"
        getter.assert_awaited_once_with(True)
