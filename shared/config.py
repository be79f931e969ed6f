"""
Shared configuration management for the cache-aside service.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CACHE_ASIDE_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache backend
    cache_backend: Literal["redis", "memory"] = Field(default="redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    key_prefix: str = Field(default="cache-aside:")

    # Source of record
    source_url: str = Field(default="http://localhost:8090")
    source_path_template: str = Field(default="/users/{key}")
    source_timeout_seconds: float = Field(default=5.0, gt=0)

    # Cache policy
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    negative_ttl_seconds: Optional[float] = Field(default=30.0, gt=0)
    stale_while_revalidate_seconds: Optional[float] = Field(default=None, gt=0)
    ttl_jitter: float = Field(default=0.1, ge=0, lt=1)
    wait_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Source retries, applied outside the accessor
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.2, ge=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
