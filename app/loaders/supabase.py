"""
Supabase configuration.

The anon key is public (row level security applies to it);
the service-role key bypasses RLS and is server-only. Adapter options
(foreign keys, procedure names, column handling) describe the schema
and are served to clients alongside the connection fields.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator

from app.config import Settings

from .base import CamelModel, ConfigLoader


class SupabaseClientConfig(CamelModel):
    url: str
    anon_key: str
    storage_bucket: str = "uploads"
    foreign_keys: dict[str, str] = Field(default_factory=dict)
    field_transform_rpc: Optional[str] = "apply_field_transforms"
    vector_search_rpcs: dict[str, str] = Field(default_factory=dict)
    snake_case_columns: bool = True
    table_columns: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SupabaseServerConfig(SupabaseClientConfig):
    service_role_key: SecretStr


class SupabaseConfigLoader(ConfigLoader):
    name = "supabase"
    client_model = SupabaseClientConfig
    server_model = SupabaseServerConfig
    required_client = {
        "url": "PUBLIC_SUPABASE_URL",
        "anonKey": "PUBLIC_SUPABASE_ANON_KEY",
    }
    required_server = {
        **required_client,
        "serviceRoleKey": "SUPABASE_SERVICE_ROLE_KEY",
    }

    def client_fields(self, settings: Settings) -> dict[str, Any]:
        return {
            "url": settings.PUBLIC_SUPABASE_URL,
            "anonKey": settings.PUBLIC_SUPABASE_ANON_KEY,
            "storageBucket": settings.SUPABASE_STORAGE_BUCKET,
            "foreignKeys": settings.SUPABASE_FOREIGN_KEYS,
            # "" keeps an explicitly disabled procedure disabled after serialization
            "fieldTransformRpc": settings.SUPABASE_FIELD_TRANSFORM_RPC or "",
            "vectorSearchRpcs": settings.SUPABASE_VECTOR_SEARCH_RPCS,
            "snakeCaseColumns": settings.SUPABASE_SNAKE_CASE_COLUMNS,
            "tableColumns": settings.SUPABASE_TABLE_COLUMNS,
        }

    def server_fields(self, settings: Settings) -> dict[str, Any]:
        return {
            **self.client_fields(settings),
            "serviceRoleKey": settings.SUPABASE_SERVICE_ROLE_KEY,
        }
