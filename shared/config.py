"""
Shared configuration management for the CRX fetch proxy.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CRX_URL_TEMPLATE = (
    "https://clients2.google.com/service/update2/crx"
    "?response=redirect&prodversion={prodversion}"
    "&acceptformat={accept_formats}&x=id%3D{id}%26uc"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with an ``ACCESS_``-prefixed environment
    variable (``ACCESS_LOG_LEVEL=debug``) or an entry in ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Upstream update service
    crx_url_template: str = DEFAULT_CRX_URL_TEMPLATE
    crx_prodversion: str = "131.0.0.0"
    crx_accept_formats: str = "crx2,crx3"
    # Kept under the 10s execution ceiling of the hosting platform
    upstream_timeout_seconds: float = Field(default=9.0, gt=0)
    stream_chunk_bytes: int = Field(default=64 * 1024, gt=0)

    # Payload limits
    max_crx_bytes: int = Field(default=20 * 1024 * 1024, gt=0)
    archive_scan_window_bytes: int = Field(default=1024, gt=0)
    max_name_length: int = Field(default=80, ge=0)

    # Rate limiting
    rate_limit_requests: int = Field(default=5, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Public base URL used when rendering proxy links; relative when unset
    public_base_url: Optional[str] = None


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
