"""
Centralized configuration using Pydantic BaseSettings.

This module owns every environment-driven setting of the backend layer:
- Provider selection (public and private variants)
- Per-provider connection fields (public-prefixed vs. server-only secrets)
- HTTP service settings (host, port, CORS, rate limiting)
- Logging configuration with secret redaction

Configuration Philosophy:
    - PUBLIC_* variables are safe to hand to clients via GET /api/config
    - Unprefixed secrets (service-role keys, service accounts) never leave
      the server process

Usage:
    from app.config import settings, get_logger

    print(settings.BACKEND_PROVIDER)  # Type-safe access
"""
from __future__ import annotations

import logging
import re
from functools import cached_property, lru_cache
from typing import Any, ClassVar, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BACKEND_PROVIDER = "firebase"


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Provider-specific fields are all optional at this level: which of them
    are required depends on the active provider and on the execution context,
    so they are validated by the config loaders (see ``app.loaders``) rather
    than here.

    Configuration Sources:
        1. Constructor keyword arguments (tests)
        2. Environment variables
        3. .env file (if present)
        4. Default values (defined below)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
        populate_by_name=True,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Server host (0.0.0.0 for external access, 127.0.0.1 for local only)",
    )
    PORT: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Server port number",
    )
    DEBUG: bool = Field(
        default=False,
        description="Debug mode - enables auto-reload (NEVER use in production)",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )

    # =========================================================================
    # Backend Provider Selection
    # =========================================================================
    # Plain strings on purpose: an unknown name is logged and replaced by the
    # default in app.loaders.get_backend_provider_name.

    PUBLIC_BACKEND_PROVIDER: str | None = Field(
        default=None,
        description="Client-visible backend provider name (takes precedence)",
    )
    BACKEND_PROVIDER: str | None = Field(
        default=None,
        description="Server-only backend provider name",
    )

    # Client processes fetch their configuration from the config endpoint
    BACKEND_CONFIG_URL: str = Field(
        default="http://127.0.0.1:8080",
        description="Base URL of the service exposing GET /api/config",
    )
    BACKEND_CONFIG_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for fetching the client configuration",
    )

    # =========================================================================
    # Firebase Configuration
    # =========================================================================
    # Public: API key and project identifiers (web SDK config)
    # Sensitive: service account credentials

    PUBLIC_FIREBASE_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_FIREBASE_API_KEY", "FIREBASE_API_KEY"),
        description="Firebase Web API key",
    )
    PUBLIC_FIREBASE_PROJECT_ID: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_FIREBASE_PROJECT_ID", "FIREBASE_PROJECT_ID"),
        description="Firebase / Google Cloud project id",
    )
    PUBLIC_FIREBASE_AUTH_DOMAIN: str | None = Field(
        default=None,
        description="Auth domain (defaults to <project>.firebaseapp.com)",
    )
    PUBLIC_FIREBASE_STORAGE_BUCKET: str | None = Field(
        default=None,
        description="Storage bucket (defaults to <project>.appspot.com)",
    )
    PUBLIC_FIREBASE_MESSAGING_SENDER_ID: str | None = Field(default=None)
    PUBLIC_FIREBASE_APP_ID: str | None = Field(default=None)
    PUBLIC_FIREBASE_MEASUREMENT_ID: str | None = Field(default=None)

    FIREBASE_CREDS_BASE64: str | None = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON",
    )
    FIREBASE_CRED_PATH: str | None = Field(
        default=None,
        description="Path to a Firebase service account JSON file",
    )
    FIREBASE_HTTP_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for Identity Toolkit / Storage REST calls",
    )

    # =========================================================================
    # Supabase Configuration
    # =========================================================================
    # Public: project URL and anon key
    # Sensitive: service-role key (bypasses row level security)

    PUBLIC_SUPABASE_URL: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_SUPABASE_URL", "SUPABASE_URL"),
        description="Supabase project URL",
    )
    PUBLIC_SUPABASE_ANON_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_SUPABASE_ANON_KEY", "SUPABASE_ANON_KEY"),
        description="Supabase anon (public) key",
    )
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        default=None,
        description="Supabase service-role key (server only)",
    )
    SUPABASE_STORAGE_BUCKET: str = Field(
        default="uploads",
        description="Storage bucket used by the storage adapter",
    )
    SUPABASE_FOREIGN_KEYS: dict[str, str] = Field(
        default_factory=dict,
        description=(
            "Explicit foreign-key columns for nested documents, keyed by "
            "'parent/sub' or 'parent' (JSON object)"
        ),
    )
    SUPABASE_FIELD_TRANSFORM_RPC: str | None = Field(
        default="apply_field_transforms",
        description="Stored procedure applying increment/array transforms atomically (empty to disable)",
    )
    SUPABASE_VECTOR_SEARCH_RPCS: dict[str, str] = Field(
        default_factory=lambda: {"master_components": "search_similar_components"},
        description="Vector search stored procedure per table (JSON object)",
    )
    SUPABASE_SNAKE_CASE_COLUMNS: bool = Field(
        default=True,
        description="Convert top-level camelCase keys to snake_case columns and back",
    )
    SUPABASE_TABLE_COLUMNS: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Optional column allow-list per table (JSON object)",
    )

    # =========================================================================
    # Session Cookies
    # =========================================================================

    SESSION_COOKIE_NAME: str = Field(
        default="__session",
        description="Cookie holding the server session",
    )
    SESSION_COOKIE_MAX_AGE_DAYS: int = Field(
        default=5,
        ge=1,
        le=14,
        description="Session cookie lifetime (Firebase allows at most 14 days)",
    )

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    RATE_LIMIT: str = Field(
        default="60/minute",
        pattern=r"^\d+/(second|minute|hour|day)$",
        description="Rate limit for the config and session endpoints (format: 'count/period')",
    )

    # =========================================================================
    # CORS Configuration
    # =========================================================================

    CORS_ORIGINS: str = Field(
        default="*",
        description="Comma-separated allowed origins ('*' for all, restrict in production)",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Ensure LOG_LEVEL is uppercase."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("PUBLIC_BACKEND_PROVIDER", "BACKEND_PROVIDER", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> Any:
        """Lowercase provider names; blank values count as unset."""
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("SUPABASE_FIELD_TRANSFORM_RPC", mode="before")
    @classmethod
    def blank_rpc_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @cached_property
    def CORS_ORIGINS_LIST(self) -> list[str]:
        """Get list of CORS origins."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @cached_property
    def SESSION_COOKIE_MAX_AGE_SECONDS(self) -> int:
        return self.SESSION_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60


# =============================================================================
# Settings Factory with Caching
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache for singleton behavior while allowing
    cache invalidation in tests.
    """
    return Settings()


# Convenience alias for direct access
settings = get_settings()


# =============================================================================
# Logging Configuration
# =============================================================================

class SanitizingFormatter(logging.Formatter):
    """
    Logging formatter that redacts sensitive information.

    Automatically redacts:
    - Bearer tokens
    - API keys (including Supabase anon / service-role keys)
    - Tokens and refresh tokens
    - Passwords
    """

    SENSITIVE_PATTERNS: ClassVar[list[tuple[re.Pattern[str], str]]] = [
        (re.compile(r'(Bearer\s+)[^\s]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(Firebase\s+)[A-Za-z0-9._-]{20,}', re.I), r'\1[REDACTED]'),
        (re.compile(r'(api[_-]?key["\']?\s*[:=]\s*["\']?)[^"\'\s&]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'([?&]key=)[^&\s]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'((?:anon|service[_-]?role)[_-]?key["\']?\s*[:=]\s*["\']?)[^"\'\s]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)[^"\'\s]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)[^"\'\s]+', re.I), r'\1[REDACTED]'),
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with sensitive data redaction."""
        message = super().format(record)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            message = pattern.sub(replacement, message)
        return message


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(SanitizingFormatter(log_format))

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[handler],
        force=True,  # Override any existing configuration
    )

    # Suppress noisy third-party loggers
    for logger_name in (
        "httpx", "httpcore", "google", "urllib3", "grpc",
        "hpack", "realtime", "aiohttp",
    ):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured logging.Logger instance
    """
    return logging.getLogger(name)


# Initialize logging on module load
configure_logging(settings.LOG_LEVEL)
