"""
Shared fixtures.

Settings are always built with ``_env_file=None`` and the provider
selection variables cleared, so a developer's .env never leaks into
test outcomes.
"""
import pytest

from app.config import Settings, get_settings
from app.providers.context import ExecutionContext
from app.providers.database.supabase_impl import SupabaseDatabaseProvider
from tests.fakes import FakeSupabaseClient

PROVIDER_ENV_VARS = (
    "PUBLIC_BACKEND_PROVIDER",
    "BACKEND_PROVIDER",
    "PUBLIC_SUPABASE_URL",
    "PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "PUBLIC_FIREBASE_API_KEY",
    "PUBLIC_FIREBASE_PROJECT_ID",
    "FIREBASE_CREDS_BASE64",
    "FIREBASE_CRED_PATH",
)

SUPABASE_SETTINGS = {
    "PUBLIC_BACKEND_PROVIDER": "supabase",
    "PUBLIC_SUPABASE_URL": "https://abc.supabase.co/",
    "PUBLIC_SUPABASE_ANON_KEY": "anon-key",
    "SUPABASE_SERVICE_ROLE_KEY": "service-role-key",
}

FIREBASE_SETTINGS = {
    "PUBLIC_BACKEND_PROVIDER": "firebase",
    "PUBLIC_FIREBASE_API_KEY": "web-api-key",
    "PUBLIC_FIREBASE_PROJECT_ID": "demo-project",
}


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def supabase_settings() -> Settings:
    return make_settings(**SUPABASE_SETTINGS)


@pytest.fixture
def firebase_settings() -> Settings:
    return make_settings(**FIREBASE_SETTINGS)


@pytest.fixture
def supabase_client() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def client_db(supabase_client) -> SupabaseDatabaseProvider:
    """Client-context Supabase adapter over the in-memory client."""
    return SupabaseDatabaseProvider(
        supabase_client,
        ExecutionContext.CLIENT,
        foreign_keys={"bikes/components": "bike_ref"},
        vector_search_rpcs={"master_components": "search_similar_components"},
    )


@pytest.fixture
def server_db(supabase_client) -> SupabaseDatabaseProvider:
    return SupabaseDatabaseProvider(supabase_client, ExecutionContext.SERVER)
