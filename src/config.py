"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating values and providing actionable error messages.

Configuration is read once at process start; nothing reloads it at runtime.
"""

import os
from typing import Literal, TypeVar

import dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

_T = TypeVar("_T", int, float)

SinkKind = Literal["cloudwatch", "duckdb", "memory"]


def _get_env_str(name: str, default: str) -> str:
    """Read a string env var, treating empty values as unset."""
    value = os.getenv(name, "").strip()
    return value or default


def _get_env_optional(name: str) -> str | None:
    """Read an optional string env var (None when unset or empty)."""
    value = os.getenv(name, "").strip()
    return value or None


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


class SinkConfig(BaseModel):
    """Where shipped log records go."""

    model_config = ConfigDict(frozen=True)

    kind: SinkKind = Field(default="cloudwatch", description="Sink backend")
    region: str = Field(default="ap-south-1", description="Sink region")
    endpoint_url: str | None = Field(default=None, description="Optional sink endpoint override")
    log_group: str = Field(default="/app/api-logs", description="Log group (channel namespace)")
    stream_prefix: str = Field(default="api-log-stream", description="Prefix for per-request channel names")
    duckdb_path: str = Field(default="telemetry.duckdb", description="DuckDB file for the local sink")
    max_pool_connections: int = Field(default=50, description="Sink client connection pool size")

    @field_validator("log_group", "stream_prefix")
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank names; the sink refuses them anyway."""
        if not v.strip():
            raise ValueError("log group and stream prefix must not be blank")
        return v

    @field_validator("max_pool_connections")
    def validate_pool_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"TELEMETRY_MAX_POOL_CONNECTIONS must be > 0. Got: {v}")
        return v


class ServerConfig(BaseModel):
    """HTTP listener and local diagnostics settings."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    log_level: str = Field(default="INFO", description="Diagnostic log level")
    diagnostics_file: str | None = Field(default=None, description="Optional JSONL diagnostics file")

    @field_validator("port")
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"APP_PORT must be between 1 and 65535. Got: {v}")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        normalized = v.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard logging level name. Got: {v!r}")
        return normalized


class AppConfig(BaseModel):
    """Top-level application configuration."""

    model_config = ConfigDict(frozen=True)

    sink: SinkConfig = Field(default_factory=SinkConfig, description="Log sink configuration")
    server: ServerConfig = Field(default_factory=ServerConfig, description="Server configuration")


def load_config() -> AppConfig:
    """Load application configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` (pydantic's `ValidationError` is a subclass) with
      actionable messages when a value is malformed.
    """
    dotenv.load_dotenv()

    sink = SinkConfig(
        kind=_get_env_str("TELEMETRY_SINK", "cloudwatch").lower(),
        region=_get_env_str("TELEMETRY_AWS_REGION", "ap-south-1"),
        endpoint_url=_get_env_optional("TELEMETRY_ENDPOINT_URL"),
        log_group=_get_env_str("TELEMETRY_LOG_GROUP", "/app/api-logs"),
        stream_prefix=_get_env_str("TELEMETRY_STREAM_PREFIX", "api-log-stream"),
        duckdb_path=_get_env_str("TELEMETRY_DUCKDB_PATH", "telemetry.duckdb"),
        max_pool_connections=_get_env_number("TELEMETRY_MAX_POOL_CONNECTIONS", 50, int),
    )
    server = ServerConfig(
        host=_get_env_str("APP_HOST", "127.0.0.1"),
        port=_get_env_number("APP_PORT", 3000, int),
        log_level=_get_env_str("LOG_LEVEL", "INFO"),
        diagnostics_file=_get_env_optional("TELEMETRY_DIAGNOSTICS_FILE"),
    )
    return AppConfig(sink=sink, server=server)
