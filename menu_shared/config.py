"""
Shared configuration management for the e-menu platform.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="MENU_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    log_json: bool = True

    # External services
    postgres_dsn: str = "postgres://localhost:5432/emenu"
    postgres_min_pool_size: int = 2
    postgres_max_pool_size: int = 10
    postgres_command_timeout: float = 30.0
    redis_url: str = "redis://localhost:6379/0"

    # Observability
    enable_tracing: bool = False
    otel_exporter: Optional[str] = None
    enable_console_tracing: bool = False

    # Service requests (waiter call)
    service_request_cooldown_seconds: int = 30
    service_request_notes_max_length: int = 500
    cooldown_backend: str = "postgres"

    # Localization
    default_locale: str = "tr"


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
