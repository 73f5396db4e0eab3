"""
Abstract interface for backend providers.

A provider bundles the auth, database and storage adapters of one
backend service for one or both execution contexts and owns their
lifecycle:

    UNINITIALIZED --initialize()--> INITIALIZING --ok--> INITIALIZED
          ^                              |
          +------------ failure ---------+
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Iterable, Mapping, Optional

from app.config import Settings, get_logger, get_settings
from app.exceptions import ContextViolationError, ProviderNotInitializedError

from .auth.interface import AuthProviderInterface
from .context import ExecutionContext
from .database.interface import DatabaseProviderInterface
from .storage.interface import StorageProviderInterface

logger = get_logger("providers")


class ProviderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


class BackendProviderInterface(ABC):
    """
    Base class for backend providers.

    Concurrent ``initialize()`` calls share one initialization. Accessors
    check that the provider was built for the accessor's context and has
    finished initializing.

    Args:
        contexts: Execution contexts to initialize (client, server or both)
        client_config: Client config payload; when omitted the client
            context fetches it from the config endpoint
        settings: Settings used by the server context (defaults to the
            process settings)
    """

    name: ClassVar[str]

    def __init__(
        self,
        contexts: Iterable[ExecutionContext] = (ExecutionContext.CLIENT,),
        *,
        client_config: Optional[Mapping[str, Any]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.contexts = frozenset(ExecutionContext(c) for c in contexts)
        if not self.contexts:
            raise ValueError("A provider needs at least one execution context")
        self.settings = settings or get_settings()
        self._client_config = client_config
        self._state = ProviderState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

        self._auth: Optional[AuthProviderInterface] = None
        self._db: Optional[DatabaseProviderInterface] = None
        self._storage: Optional[StorageProviderInterface] = None
        self._server_auth: Optional[AuthProviderInterface] = None
        self._server_db: Optional[DatabaseProviderInterface] = None

    @property
    def state(self) -> ProviderState:
        return self._state

    def is_initialized(self) -> bool:
        return self._state is ProviderState.INITIALIZED

    async def initialize(self) -> None:
        """
        Initialize every requested context. Idempotent.

        Raises:
            ConfigurationError: If the backend configuration is invalid
        """
        if self._state is ProviderState.INITIALIZED:
            return
        async with self._init_lock:
            if self._state is ProviderState.INITIALIZED:
                return
            self._state = ProviderState.INITIALIZING
            contexts = ", ".join(sorted(c.value for c in self.contexts))
            logger.info("Initializing %s provider | contexts=%s", self.name, contexts)
            try:
                if ExecutionContext.SERVER in self.contexts:
                    await self._initialize_server()
                if ExecutionContext.CLIENT in self.contexts:
                    await self._initialize_client()
            except BaseException as e:
                self._state = ProviderState.UNINITIALIZED
                logger.error("%s provider initialization failed: %s", self.name, e)
                await self._release()
                raise
            self._state = ProviderState.INITIALIZED
            logger.info("%s provider initialized | contexts=%s", self.name, contexts)

    async def close(self) -> None:
        """Release vendor clients and return to UNINITIALIZED."""
        async with self._init_lock:
            await self._release()
            self._state = ProviderState.UNINITIALIZED
            logger.info("%s provider closed", self.name)

    async def _release(self) -> None:
        await self._close()
        self._auth = self._db = self._storage = None
        self._server_auth = self._server_db = None

    @abstractmethod
    async def _initialize_client(self) -> None:
        """Build the client-context adapters."""
        pass

    @abstractmethod
    async def _initialize_server(self) -> None:
        """Build the server-context adapters."""
        pass

    @abstractmethod
    async def _close(self) -> None:
        pass

    # =========================================================================
    # Accessors
    # =========================================================================

    def _require(self, context: ExecutionContext, accessor: str) -> None:
        if context not in self.contexts:
            built_for = "+".join(sorted(c.value for c in self.contexts))
            raise ContextViolationError(
                accessor,
                built_for,
                f"construct the {self.name} provider with the {context.value} context",
            )
        if self._state is not ProviderState.INITIALIZED:
            raise ProviderNotInitializedError(
                f"{self.name} provider is {self._state.value}; await initialize() before {accessor}()"
            )

    def get_auth(self) -> AuthProviderInterface:
        self._require(ExecutionContext.CLIENT, "get_auth")
        return self._auth

    def get_db(self) -> DatabaseProviderInterface:
        self._require(ExecutionContext.CLIENT, "get_db")
        return self._db

    def get_storage(self) -> StorageProviderInterface:
        self._require(ExecutionContext.CLIENT, "get_storage")
        return self._storage

    def get_server_auth(self) -> AuthProviderInterface:
        self._require(ExecutionContext.SERVER, "get_server_auth")
        return self._server_auth

    def get_server_db(self) -> DatabaseProviderInterface:
        self._require(ExecutionContext.SERVER, "get_server_db")
        return self._server_db

    async def _load_client_config(self) -> Mapping[str, Any]:
        if self._client_config is not None:
            return self._client_config
        from app.loaders import fetch_client_backend_config

        return await fetch_client_backend_config(expected=self.name)

    def __repr__(self) -> str:
        contexts = "+".join(sorted(c.value for c in self.contexts))
        return f"{self.__class__.__name__}(contexts={contexts}, state={self._state.value})"
