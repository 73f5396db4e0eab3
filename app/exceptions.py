"""
Custom exceptions for the backend provider layer.

This module provides a consistent exception hierarchy for error handling
across all providers, adapters and the HTTP service.

Exception Hierarchy:
    BackendException (base)
    ├── ConfigurationError (500)
    │   └── ProviderNotFoundError (500)
    ├── ContextViolationError (500)
    ├── ProviderNotInitializedError (500)
    ├── UnsupportedFeatureError (501)
    ├── QueryValidationError (400)
    ├── AuthError (401)
    ├── DatabaseError (503)
    └── StorageError (503)

Usage:
    from app.exceptions import UnsupportedFeatureError

    raise UnsupportedFeatureError("run_transaction", "supabase")
"""
from __future__ import annotations

from typing import Any


class BackendException(Exception):
    """
    Base exception for all backend layer errors.

    All custom exceptions inherit from this class, enabling
    consistent error handling at the API layer.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code for API response
        details: Additional error details (optional)
        error_code: Machine-readable error code (optional)
    """

    default_message: str = "An error occurred"
    default_status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        details: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.status_code = status_code or self.default_status_code
        self.details = details
        self.error_code = error_code or self.__class__.__name__.upper()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dictionary with error details
        """
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


# =============================================================================
# Configuration Errors (500)
# =============================================================================

class ConfigurationError(BackendException):
    """
    Raised when configuration is invalid or missing.

    Examples:
        - Missing required provider fields (API key, project id, anon key)
        - Missing server secrets (service-role key)
        - Config endpoint returned a payload for a different provider
    """

    default_message = "Configuration error"
    default_status_code = 500


class ProviderNotFoundError(ConfigurationError):
    """Raised when a provider name is not present in the registry."""

    default_message = "Backend provider not found in registry"

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(
            f'Backend provider "{name}" not found in registry. '
            f"Available providers: {', '.join(available)}",
            error_code="PROVIDER_NOT_FOUND",
        )


# =============================================================================
# Programmer Errors (500)
# =============================================================================

class ContextViolationError(BackendException):
    """
    Raised when a method is called from the wrong execution context.

    Examples:
        - verify_id_token on a client-context auth adapter
        - get_current_user on a server-context auth adapter
        - on_snapshot on a server-context database adapter
    """

    default_message = "Operation not available in this context"
    default_status_code = 500

    def __init__(self, operation: str, context: str, hint: str | None = None) -> None:
        self.operation = operation
        self.context = context
        message = f"{operation} is not available in the {context} context"
        if hint:
            message = f"{message}: {hint}"
        super().__init__(message, error_code="CONTEXT_VIOLATION")


class ProviderNotInitializedError(BackendException):
    """Raised when a provider accessor is used before initialize() completed."""

    default_message = "Backend provider is not initialized"
    default_status_code = 500


# =============================================================================
# Capability Errors (501)
# =============================================================================

class UnsupportedFeatureError(BackendException):
    """
    Raised when the active backend cannot honor a requested feature.

    Examples:
        - Atomic array transforms without the transform procedure installed
        - Transactions on the relational backend
        - Vector search on a table without a search procedure
    """

    default_message = "Feature not supported by the active backend"
    default_status_code = 501

    def __init__(self, feature: str, provider: str, details: str | None = None) -> None:
        self.feature = feature
        self.provider = provider
        message = f"{feature} is not supported by the {provider} backend"
        super().__init__(message, details=details, error_code="UNSUPPORTED_FEATURE")


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class QueryValidationError(BackendException):
    """
    Raised when query constraints are malformed.

    Examples:
        - Unknown comparison operator
        - Cursor without a preceding order_by
        - Non-positive limit
    """

    default_message = "Invalid query"
    default_status_code = 400


class AuthError(BackendException):
    """
    Raised when an authentication call fails.

    The vendor error code (e.g. ``INVALID_PASSWORD``) is kept in
    ``error_code`` so callers can show a tailored message.
    """

    default_message = "Authentication failed"
    default_status_code = 401


# =============================================================================
# Backend Call Errors (503)
# =============================================================================

class DatabaseError(BackendException):
    """
    Raised when a database call fails.

    Examples:
        - PostgREST returned an error payload
        - Vector search procedure failed
    """

    default_message = "Database service error"
    default_status_code = 503


class StorageError(BackendException):
    """
    Raised when an object storage call fails.

    Examples:
        - Upload rejected by storage rules
        - Malformed data URL
        - Download URL requested for a missing object
    """

    default_message = "Storage service error"
    default_status_code = 503
