"""
Shared configuration management for the Paper Trail backend.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PAPERTRAIL_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/papertrail")

    # Cache TTLs per namespace
    note_cache_ttl_seconds: int = Field(default=900, ge=1)
    user_notes_cache_ttl_seconds: int = Field(default=600, ge=1)
    shared_notes_cache_ttl_seconds: int = Field(default=600, ge=1)

    # Calls faster than this are counted as cache hits by the estimator
    cache_hit_threshold_ms: float = Field(default=5.0, gt=0)

    # Cache resilience
    cache_operation_timeout_seconds: float = Field(default=0.25, gt=0)
    cache_breaker_failure_threshold: int = Field(default=5, ge=1)
    cache_breaker_recovery_seconds: float = Field(default=30.0, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
