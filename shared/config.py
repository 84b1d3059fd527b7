"""
Shared configuration management for the weather edge proxy.
"""

from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROXY_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"


class ProxyConfig(BaseConfig):
    """Process-wide proxy settings, read once at startup."""

    service_name: str = "proxy"
    host: str = "0.0.0.0"
    port: int = 8000

    # Response cache
    cache_ttl: int = Field(default=60, ge=0)

    # Rate limiting (requests per window)
    rate_limit: int = Field(default=60, ge=0)
    rate_window: int = Field(default=60, ge=1)

    # Security
    api_key: str = ""
    allowed_origins: str = ""

    # Provider credentials
    openweather_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "openweather_key",
            "OPENWEATHER_KEY",
            "VERCEL_OPENWEATHER_KEY",
        ),
    )

    # Shared backend; empty URL selects the in-process backends
    redis_url: str = ""
    redis_token: str = ""

    # Timeouts (seconds)
    backend_timeout: float = Field(default=2.0, gt=0)
    upstream_timeout: float = Field(default=10.0, gt=0)

    @property
    def allowed_origin_list(self) -> List[str]:
        """Allowed origin substrings, blanks removed."""
        return [item.strip() for item in self.allowed_origins.split(",") if item.strip()]

    @property
    def shared_backend_enabled(self) -> bool:
        return bool(self.redis_url)


def get_config(**overrides) -> ProxyConfig:
    """Get configuration for the proxy service."""
    return ProxyConfig(**overrides)
