"""
Shared machinery for per-backend configuration loaders.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.config import Settings
from app.exceptions import ConfigurationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class CamelModel(BaseModel):
    """Config model serialized with camelCase keys (the client wire format)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )

    def to_public_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ConfigLoader(ABC):
    """
    Builds and validates one backend's configuration.

    Subclasses declare which camelCase fields are required in each
    context and the environment variable each one comes from, so a
    missing value is reported by the name the operator has to set.
    """

    name: ClassVar[str]
    client_model: ClassVar[type[CamelModel]]
    server_model: ClassVar[type[CamelModel]]
    required_client: ClassVar[dict[str, str]]
    required_server: ClassVar[dict[str, str]]

    @abstractmethod
    def client_fields(self, settings: Settings) -> dict[str, Any]:
        """Client-safe values read from settings, keyed by camelCase field."""
        pass

    @abstractmethod
    def server_fields(self, settings: Settings) -> dict[str, Any]:
        """Server values (may include secrets), keyed by camelCase field."""
        pass

    def load_client(self, settings: Settings) -> CamelModel:
        return self._validate(self.client_model, self.client_fields(settings), self.required_client, "client")

    def load_server(self, settings: Settings) -> CamelModel:
        return self._validate(self.server_model, self.server_fields(settings), self.required_server, "server")

    def parse_client(self, payload: Mapping[str, Any]) -> CamelModel:
        """Validate a payload received from GET /api/config."""
        return self._validate(self.client_model, dict(payload), self.required_client, "client")

    def _validate(self, model: type[ModelT], fields: dict[str, Any],
                  required: dict[str, str], context: str) -> ModelT:
        missing = [env for key, env in required.items() if not fields.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing {self.name} {context} configuration: {', '.join(missing)}",
                error_code="MISSING_CONFIGURATION",
            )
        try:
            return model.model_validate({k: v for k, v in fields.items() if v is not None})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid {self.name} {context} configuration",
                details=str(e),
                error_code="INVALID_CONFIGURATION",
            ) from e
