"""
Backend factory.

BackendContainer owns one client-context and one server-context provider
slot. Each slot resolves the configured backend, then constructs and
initializes its provider exactly once, even under concurrent callers.

Code that does not thread a container through can use the module-level
delegates, which act on a process-wide default container:

    from app.providers.factory import get_server_db

    db = await get_server_db()
    snapshot = await db.get_doc("users", uid)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from app.config import Settings, get_logger, get_settings
from app.loaders import get_backend_provider_name

from .auth.interface import AuthProviderInterface
from .context import ExecutionContext
from .database.interface import DatabaseProviderInterface
from .interface import BackendProviderInterface
from .registry import BackendName, get_provider_class
from .storage.interface import StorageProviderInterface

logger = get_logger("providers.factory")


@dataclass
class BackendServices:
    """Client-context capability objects of the active backend."""
    provider: str
    auth: AuthProviderInterface
    db: DatabaseProviderInterface
    storage: StorageProviderInterface


class _ProviderSlot:
    def __init__(self, context: ExecutionContext) -> None:
        self.context = context
        self.provider: Optional[BackendProviderInterface] = None
        self.lock = asyncio.Lock()


class BackendContainer:
    """
    Explicit owner of the backend providers.

    Args:
        settings: Settings to resolve the backend from (defaults to process settings)
        provider_name: Override the configured backend
        client_config: Client config payload for the client slot; when omitted
            the client provider fetches it from the config endpoint
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        provider_name: Optional[BackendName | str] = None,
        client_config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._provider_name = provider_name
        self._client_config = client_config
        self._client = _ProviderSlot(ExecutionContext.CLIENT)
        self._server = _ProviderSlot(ExecutionContext.SERVER)

    @property
    def provider_name(self) -> str:
        if self._provider_name is not None:
            return str(getattr(self._provider_name, "value", self._provider_name))
        return get_backend_provider_name(self.settings).value

    async def _provider(self, slot: _ProviderSlot) -> BackendProviderInterface:
        if slot.provider is not None and slot.provider.is_initialized():
            return slot.provider
        async with slot.lock:
            if slot.provider is None:
                provider_class = get_provider_class(self.provider_name)
                slot.provider = provider_class(
                    (slot.context,),
                    client_config=self._client_config if slot.context is ExecutionContext.CLIENT else None,
                    settings=self.settings,
                )
                logger.debug("Created %r", slot.provider)
            await slot.provider.initialize()
            return slot.provider

    async def get_client_provider(self) -> BackendProviderInterface:
        return await self._provider(self._client)

    async def get_server_provider(self) -> BackendProviderInterface:
        return await self._provider(self._server)

    # =========================================================================
    # Capability Accessors
    # =========================================================================

    async def get_auth(self) -> AuthProviderInterface:
        return (await self.get_client_provider()).get_auth()

    async def get_db(self) -> DatabaseProviderInterface:
        return (await self.get_client_provider()).get_db()

    async def get_storage(self) -> StorageProviderInterface:
        return (await self.get_client_provider()).get_storage()

    async def get_server_auth(self) -> AuthProviderInterface:
        return (await self.get_server_provider()).get_server_auth()

    async def get_server_db(self) -> DatabaseProviderInterface:
        return (await self.get_server_provider()).get_server_db()

    async def get_backend_services(self) -> BackendServices:
        provider = await self.get_client_provider()
        return BackendServices(
            provider=provider.name,
            auth=provider.get_auth(),
            db=provider.get_db(),
            storage=provider.get_storage(),
        )

    # =========================================================================
    # Resets
    # =========================================================================
    # Maintenance and test hooks; the next accessor call re-reads settings.

    async def _reset(self, slot: _ProviderSlot) -> None:
        async with slot.lock:
            if slot.provider is not None:
                await slot.provider.close()
                logger.info("Reset %s backend (%s)", slot.context.value, slot.provider.name)
            slot.provider = None

    async def reset_backend(self) -> None:
        await self._reset(self._client)

    async def reset_server_backend(self) -> None:
        await self._reset(self._server)

    async def reset_all_backends(self) -> None:
        await self.reset_backend()
        await self.reset_server_backend()

    async def close(self) -> None:
        await self.reset_all_backends()


# =============================================================================
# Default Container + Module-level Delegates
# =============================================================================

_default_container: Optional[BackendContainer] = None


def get_default_container() -> BackendContainer:
    global _default_container
    if _default_container is None:
        _default_container = BackendContainer()
    return _default_container


def set_default_container(container: Optional[BackendContainer]) -> None:
    """Replace the default container (None creates a fresh one on next use)."""
    global _default_container
    _default_container = container


async def get_auth() -> AuthProviderInterface:
    return await get_default_container().get_auth()


async def get_db() -> DatabaseProviderInterface:
    return await get_default_container().get_db()


async def get_storage() -> StorageProviderInterface:
    return await get_default_container().get_storage()


async def get_server_auth() -> AuthProviderInterface:
    return await get_default_container().get_server_auth()


async def get_server_db() -> DatabaseProviderInterface:
    return await get_default_container().get_server_db()


async def get_backend_services() -> BackendServices:
    return await get_default_container().get_backend_services()


async def reset_backend() -> None:
    await get_default_container().reset_backend()


async def reset_server_backend() -> None:
    await get_default_container().reset_server_backend()


async def reset_all_backends() -> None:
    await get_default_container().reset_all_backends()
