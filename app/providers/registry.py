"""
Backend provider registry.

Maps the closed set of backend names to provider classes. Provider
modules are imported on first lookup so that selecting one backend
never imports the other backend's SDK.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable

from app.exceptions import ConfigurationError, ProviderNotFoundError

if TYPE_CHECKING:
    from .interface import BackendProviderInterface


class BackendName(str, Enum):
    FIREBASE = "firebase"
    SUPABASE = "supabase"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


def _firebase() -> type["BackendProviderInterface"]:
    from .firebase_provider import FirebaseProvider
    return FirebaseProvider


def _supabase() -> type["BackendProviderInterface"]:
    from .supabase_provider import SupabaseProvider
    return SupabaseProvider


BACKEND_REGISTRY: dict[BackendName, Callable[[], type["BackendProviderInterface"]]] = {
    BackendName.FIREBASE: _firebase,
    BackendName.SUPABASE: _supabase,
}

# Backends whose SDK ships as an optional extra of this package
BACKEND_EXTRAS: dict[BackendName, str] = {
    BackendName.FIREBASE: "firebase",
}


def get_provider_class(name: BackendName | str) -> type["BackendProviderInterface"]:
    """
    Look up the provider class for ``name``.

    Raises:
        ProviderNotFoundError: If ``name`` is not a registered backend
        ConfigurationError: If the backend's SDK is not installed
    """
    try:
        key = BackendName(name)
    except ValueError:
        raise ProviderNotFoundError(str(name), BackendName.values()) from None
    loader = BACKEND_REGISTRY.get(key)
    if loader is None:
        raise ProviderNotFoundError(key.value, [n.value for n in BACKEND_REGISTRY])
    try:
        return loader()
    except ImportError as e:
        extra = BACKEND_EXTRAS.get(key)
        hint = f" Install it with: pip install 'backend-provider-layer[{extra}]'" if extra else ""
        raise ConfigurationError(
            f"The {key.value} backend is selected but its SDK is not installed",
            details=f"{e}.{hint}",
            error_code="MISSING_DEPENDENCY",
        ) from e
