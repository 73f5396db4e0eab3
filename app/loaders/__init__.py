"""
Backend configuration loading.

Resolves which backend is active and builds its validated configuration
for either side of the trust boundary:

- get_public_backend_config: client-safe dict served by GET /api/config
- get_backend_config: server config, may hold secrets
- fetch_client_backend_config: client processes pull their config from
  the config endpoint instead of reading secrets locally
"""
from __future__ import annotations

from typing import Any, Optional

import aiohttp

from app.config import Settings, get_logger, get_settings, DEFAULT_BACKEND_PROVIDER
from app.exceptions import ConfigurationError
from app.providers.registry import BackendName

from .base import CamelModel, ConfigLoader
from .firebase import FirebaseClientConfig, FirebaseConfigLoader, FirebaseServerConfig
from .supabase import SupabaseClientConfig, SupabaseConfigLoader, SupabaseServerConfig

logger = get_logger("loaders")

CONFIG_LOADERS: dict[BackendName, ConfigLoader] = {
    BackendName.FIREBASE: FirebaseConfigLoader(),
    BackendName.SUPABASE: SupabaseConfigLoader(),
}

CONFIG_PATH = "/api/config"


def get_backend_provider_name(settings: Optional[Settings] = None) -> BackendName:
    """
    Resolve the active backend.

    PUBLIC_BACKEND_PROVIDER wins over BACKEND_PROVIDER; with neither set
    the default backend is used. An unknown name is logged and replaced
    by the default rather than failing startup.
    """
    settings = settings or get_settings()
    raw = settings.PUBLIC_BACKEND_PROVIDER or settings.BACKEND_PROVIDER
    if raw is None:
        return BackendName(DEFAULT_BACKEND_PROVIDER)
    try:
        return BackendName(raw)
    except ValueError:
        logger.warning(
            "Unknown backend provider %r, falling back to %s (valid: %s)",
            raw,
            DEFAULT_BACKEND_PROVIDER,
            ", ".join(BackendName.values()),
        )
        return BackendName(DEFAULT_BACKEND_PROVIDER)


def get_config_loader(name: BackendName | str) -> ConfigLoader:
    return CONFIG_LOADERS[BackendName(name)]


def get_public_backend_config(settings: Optional[Settings] = None) -> dict[str, Any]:
    """
    Client-safe configuration of the active backend.

    Raises:
        ConfigurationError: If a required public field is missing
    """
    settings = settings or get_settings()
    name = get_backend_provider_name(settings)
    config = CONFIG_LOADERS[name].load_client(settings)
    return {"provider": name.value, **config.to_public_dict()}


def get_backend_config(settings: Optional[Settings] = None) -> CamelModel:
    """
    Server configuration of the active backend. Never serialize this to clients.

    Raises:
        ConfigurationError: If a required field or secret is missing
    """
    settings = settings or get_settings()
    name = get_backend_provider_name(settings)
    return CONFIG_LOADERS[name].load_server(settings)


async def fetch_client_backend_config(
    url: Optional[str] = None,
    expected: Optional[BackendName | str] = None,
    timeout_seconds: Optional[float] = None,
) -> dict[str, Any]:
    """
    Fetch the client configuration from a running config endpoint.

    Args:
        url: Service base URL (defaults to BACKEND_CONFIG_URL)
        expected: Fail unless the endpoint reports this provider

    Raises:
        ConfigurationError: On HTTP failure, a payload without ``provider``,
            or a provider different from ``expected``
    """
    settings = get_settings()
    base_url = (url or settings.BACKEND_CONFIG_URL).rstrip("/")
    timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.BACKEND_CONFIG_TIMEOUT_SECONDS)

    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{base_url}{CONFIG_PATH}") as response:
                payload = await response.json(content_type=None)
                if response.status != 200:
                    message = payload.get("detail") if isinstance(payload, dict) else None
                    raise ConfigurationError(
                        f"Config endpoint returned {response.status}: {message or response.reason}",
                        error_code="CONFIG_FETCH_FAILED",
                    )
    except aiohttp.ClientError as e:
        raise ConfigurationError(
            f"Could not fetch backend configuration from {base_url}: {e}",
            error_code="CONFIG_FETCH_FAILED",
        ) from e

    if not isinstance(payload, dict) or not payload.get("provider"):
        raise ConfigurationError("Config endpoint response has no provider field", error_code="INVALID_CONFIGURATION")
    if expected is not None and payload["provider"] != BackendName(expected).value:
        raise ConfigurationError(
            f"Config endpoint serves {payload['provider']!r} but {BackendName(expected).value!r} was requested",
            error_code="PROVIDER_MISMATCH",
        )
    logger.info("Fetched client backend config | provider=%s", payload["provider"])
    return payload


__all__ = [
    "CONFIG_LOADERS",
    "ConfigLoader",
    "FirebaseClientConfig",
    "FirebaseServerConfig",
    "SupabaseClientConfig",
    "SupabaseServerConfig",
    "fetch_client_backend_config",
    "get_backend_config",
    "get_backend_provider_name",
    "get_config_loader",
    "get_public_backend_config",
]
