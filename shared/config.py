"""
Shared configuration management for the Book Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden through a ``BOOKS_``-prefixed environment
    variable (``BOOKS_RATE_LIMIT_MAX_REQUESTS=50``) or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOKS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Tracing
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")
    enable_console_tracing: bool = Field(default=False)

    # External metadata provider
    google_books_base_url: str = Field(default="https://www.googleapis.com/books/v1")
    google_books_api_key: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = Field(default="BookTracker/1.0")

    # Outbound admission control
    rate_limit_max_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Response cache
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_size: int = Field(default=100, ge=1)
    serve_stale_on_error: bool = Field(default=False)

    # Circuit breakers
    provider_failure_threshold: int = Field(default=3, ge=1)
    provider_open_timeout: float = Field(default=60.0, ge=0)
    persistence_failure_threshold: int = Field(default=5, ge=1)
    persistence_open_timeout: float = Field(default=30.0, ge=0)


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
