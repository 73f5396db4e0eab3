"""
Application state for the HTTP service.

The service only runs the server context: it verifies tokens and mints
session cookies. Startup does not abort on a misconfigured backend so
that GET /api/config can report the problem and health checks can show
the service as unhealthy.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.config import Settings, get_logger, get_settings
from app.exceptions import BackendException
from app.providers.factory import BackendContainer, set_default_container

logger = get_logger("state")


@dataclass
class AppState:
    """Central container for shared application resources."""
    backend: BackendContainer
    provider_name: str
    server_ready: bool = False
    startup_error: Optional[str] = None

    @classmethod
    async def create(cls, settings: Optional[Settings] = None) -> "AppState":
        """
        Create the backend container and initialize the server context.

        The container also becomes the process default, so code using the
        module-level accessors shares the same providers.
        """
        settings = settings or get_settings()
        container = BackendContainer(settings)
        set_default_container(container)
        provider_name = container.provider_name

        try:
            await container.get_server_provider()
        except BackendException as e:
            logger.critical("Server backend %s failed to initialize: %s", provider_name, e.message)
            return cls(backend=container, provider_name=provider_name, startup_error=e.message)

        logger.info("Server backend ready | provider=%s", provider_name)
        return cls(backend=container, provider_name=provider_name, server_ready=True)

    def is_ready(self) -> bool:
        """Check if the application is ready to handle requests."""
        return self.server_ready

    async def close(self) -> None:
        await self.backend.close()
