"""
Shared configuration management for the ESI Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ESI_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream ESI
    base_url: str = Field(default="https://esi.evetech.net/latest")
    datasource: str = Field(default="tranquility")
    user_agent: str = Field(default="esi-access/1.0")
    request_timeout: float = Field(default=10.0)

    # Coalescer hard stop for a single remote call; None disables it
    call_timeout: Optional[float] = Field(default=30.0)

    # Transport retries
    retry_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.5)
    retry_max_delay: float = Field(default=5.0)


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
