# Copyright 2021-present Kensho Technologies, LLC.
"""Configuration of the gateway process, read from a JSON document.

Example document:

    {
        "backends": [
            {
                "backend_id": "fips",
                "url": "http://fips.internal/graphql",
                "default_authorization": "Bearer app-token",
                "type_renamings": {"State": "FipsState"},
                "field_renamings": {"Query": {"allStates": "allFipsStates"}},
                "timeout_seconds": 10
            }
        ],
        "exclude_failed_backends": false,
        "host": "0.0.0.0",
        "port": 8080,
        "log_level": "INFO",
        "graphiql": true,
        "extensions": "examples.fips_gateway:gateway_extensions"
    }

The path of the document is read from the GRAPHQL_GATEWAY_CONFIG environment variable.
"""
from typing import Any, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .typedefs import BackendDescriptor


_ENVIRONMENT_PREFIX = "GRAPHQL_GATEWAY_"

# Environment variable holding the path of the configuration document.
CONFIG_PATH_ENVIRONMENT_VARIABLE = f"{_ENVIRONMENT_PREFIX}CONFIG"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class GatewayConfig(BaseModel):
    """Configuration of the gateway process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Backends federated by the gateway, in merge order.
    backends: Tuple[BackendDescriptor, ...]

    # If True, backends that cannot be introspected at startup are left out of the gateway schema
    # instead of preventing startup.
    exclude_failed_backends: bool = Field(default=False, strict=True)

    # Address the HTTP server listens on.
    host: str = Field(default="127.0.0.1", strict=True)
    port: int = Field(default=8080, gt=0, lt=65536, strict=True)

    log_level: LogLevel = "INFO"

    # If True, GET /graphql serves GraphiQL, an in-browser IDE for the GraphQL endpoint.
    graphiql: bool = Field(default=True, strict=True)

    # Import path "module:attribute" of the GatewayExtensions to serve, if any.
    extensions: Optional[str] = Field(default=None, pattern=r"^[\w.]+:\w+$")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @model_validator(mode="after")
    def check_unique_backend_ids(self) -> "GatewayConfig":
        backend_ids = [backend.backend_id for backend in self.backends]
        duplicate_ids = sorted(
            {backend_id for backend_id in backend_ids if backend_ids.count(backend_id) > 1}
        )
        if duplicate_ids:
            raise ValueError(f"Backend ids must be unique, but found duplicates {duplicate_ids}.")
        return self


class GatewaySettings(BaseSettings):
    """Settings read from the environment of the gateway process."""

    model_config = SettingsConfigDict(env_prefix=_ENVIRONMENT_PREFIX, extra="ignore")

    # Path of the JSON configuration document.
    config: Optional[str] = None


def parse_gateway_config(document: Any) -> GatewayConfig:
    """Build the gateway configuration out of a decoded JSON document.

    Raises:
        pydantic.ValidationError (a ValueError) naming the offending keys if the document is
        invalid
    """
    return GatewayConfig.model_validate(document)


def load_gateway_config(path: str) -> GatewayConfig:
    """Read the gateway configuration from a JSON file.

    Raises:
        - OSError if the file cannot be read
        - pydantic.ValidationError (a ValueError) if it is not valid JSON or not a valid
          configuration
    """
    with open(path, "r", encoding="utf-8") as f:
        return GatewayConfig.model_validate_json(f.read())


def get_gateway_config() -> GatewayConfig:
    """Read the gateway configuration from the file named by GRAPHQL_GATEWAY_CONFIG.

    Raises:
        ValueError if the environment variable is not set, or the configuration is invalid
    """
    settings = GatewaySettings()
    if not settings.config:
        raise ValueError(
            f"Set {CONFIG_PATH_ENVIRONMENT_VARIABLE} to the path of the gateway configuration."
        )
    return load_gateway_config(settings.config)
