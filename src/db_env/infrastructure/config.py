"""Configuration management for the storage environment."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageConfig(BaseModel):
    """Storage configuration."""

    data_dir: Path = Field(default=Path("/data"), description="Environment directory path")
    map_size: int = Field(
        default=1073741824,
        ge=1048576,
        description="Per-file map size budget in bytes (default 1GB)",
    )
    max_readers: int = Field(default=126, ge=1, le=4096, description="Max concurrent readers per file")
    sync_mode: Literal["sync", "write_nosync", "nosync"] = Field(
        default="write_nosync", description="Default transaction durability"
    )


class FlushConfig(BaseModel):
    """Background flush configuration."""

    interval_seconds: float = Field(
        default=0.5, gt=0, description="How often the flush worker wakes up"
    )
    idle_seconds: float = Field(
        default=2.0, ge=0, description="Quiet time after the last update before flushing"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="db_env", description="Service name for tracing")
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Port for the Prometheus endpoint (off if unset)"
    )


class Config(BaseSettings):
    """Main configuration for the storage environment."""

    model_config = SettingsConfigDict(
        env_prefix="DB_ENV_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    flush: FlushConfig = Field(default_factory=FlushConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
