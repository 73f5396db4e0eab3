"""
Supabase backend provider.

Client context uses the anon key and keeps the end-user session on the
client (auto refresh on). Server context uses the service-role key with
session handling off, so one process-wide client serves every request.
"""
from __future__ import annotations

from typing import Any, Optional

from supabase import AsyncClient, AsyncClientOptions, AsyncSupabaseException, acreate_client

from app.config import get_logger
from app.exceptions import ConfigurationError
from app.loaders.supabase import SupabaseClientConfig, SupabaseConfigLoader, SupabaseServerConfig

from .auth.supabase_impl import SupabaseAuthProvider
from .context import ExecutionContext
from .database.supabase_impl import SupabaseDatabaseProvider
from .interface import BackendProviderInterface
from .storage.supabase_impl import SupabaseStorageProvider

logger = get_logger("providers.supabase")


def _database(client: AsyncClient, config: SupabaseClientConfig, context: ExecutionContext) -> SupabaseDatabaseProvider:
    return SupabaseDatabaseProvider(
        client,
        context,
        foreign_keys=config.foreign_keys,
        transform_rpc=config.field_transform_rpc or None,
        vector_search_rpcs=config.vector_search_rpcs,
        snake_case_columns=config.snake_case_columns,
        table_columns=config.table_columns,
    )


async def _connect(url: str, key: str, options: AsyncClientOptions) -> AsyncClient:
    try:
        return await acreate_client(url, key, options)
    except AsyncSupabaseException as e:
        raise ConfigurationError(
            f"Supabase client could not be created: {e}",
            error_code="INVALID_CONFIGURATION",
        ) from e


class SupabaseProvider(BackendProviderInterface):
    name = "supabase"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._loader = SupabaseConfigLoader()
        self._client: Optional[AsyncClient] = None
        self._server_client: Optional[AsyncClient] = None

    async def _initialize_client(self) -> None:
        config: SupabaseClientConfig = self._loader.parse_client(await self._load_client_config())
        self._client = await _connect(
            config.url,
            config.anon_key,
            AsyncClientOptions(auto_refresh_token=True, persist_session=True),
        )
        self._auth = SupabaseAuthProvider(self._client, ExecutionContext.CLIENT)
        self._db = _database(self._client, config, ExecutionContext.CLIENT)
        self._storage = SupabaseStorageProvider(self._client, ExecutionContext.CLIENT, bucket=config.storage_bucket)
        logger.info("Supabase client context ready | url=%s", config.url)

    async def _initialize_server(self) -> None:
        config: SupabaseServerConfig = self._loader.load_server(self.settings)
        self._server_client = await _connect(
            config.url,
            config.service_role_key.get_secret_value(),
            AsyncClientOptions(auto_refresh_token=False, persist_session=False),
        )
        self._server_auth = SupabaseAuthProvider(self._server_client, ExecutionContext.SERVER)
        self._server_db = _database(self._server_client, config, ExecutionContext.SERVER)
        logger.info("Supabase server context ready | url=%s", config.url)

    async def _close(self) -> None:
        if isinstance(self._auth, SupabaseAuthProvider):
            self._auth.close()
        if self._client is not None:
            await self._client.remove_all_channels()
        self._client = None
        self._server_client = None
