"""
Shared configuration management for the QA Showcase gateway.
"""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Security
    service_api_key: str = Field(default="service-secret")
    jwt_secret: str = Field(default="dev-jwt-secret")
    jwt_algorithm: str = Field(default="HS256")
    internal_service_token: str = Field(default="internal-service")

    # Adapter calls
    proxy_timeout_seconds: float = Field(default=30.0)
    completion_timeout_seconds: float = Field(default=2.0)
    completion_max_attempts: int = Field(default=3)
    completion_backoff_seconds: float = Field(default=0.1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service.

    An explicit ``PORT`` environment variable wins over the service default.
    """
    return ServiceConfig(service_name=service_name, port=int(os.getenv("PORT", port)))
