"""
Shared configuration management for the resource cache.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="RESOURCE_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote backend
    api_base_url: str = Field(default="http://localhost:3000/api")
    request_timeout: float = Field(default=30.0, gt=0)
    auth_token: Optional[str] = Field(default=None)


class CacheConfig(BaseConfig):
    """Cache, retry and revalidation settings."""

    service_name: str = Field(default="resource_cache")

    # Read retry policy (fixed interval)
    retry_count: int = Field(default=3, ge=0)
    retry_interval: float = Field(default=5.0, ge=0)

    # Revalidation
    dedupe_interval: float = Field(default=2.0, ge=0)
    revalidate_on_focus: bool = Field(default=False)
    revalidate_on_reconnect: bool = Field(default=True)
    refresh_interval: float = Field(default=0.0, ge=0)

    # Pagination
    page_size: int = Field(default=8, ge=1)

    # Observability
    enable_metrics: bool = Field(default=True)
    metrics_port: Optional[int] = Field(default=None)


def get_config(**overrides) -> CacheConfig:
    """Get cache configuration, environment first, explicit overrides last."""
    return CacheConfig(**overrides)
