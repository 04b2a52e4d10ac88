"""
Configuration module with strict validation.

Key principles:
- APP STARTUP does NOT require feed credentials (anonymous FTP is the default)
- The partner API is optional; without a token image lookups use feed data only
- The refresh schedule is validated as a five-field cron expression at load time
- Safe defaults for all optional settings
"""
from typing import Dict, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from propfeed.core.scheduler_service import validate_cron_expression


VALID_TRANSPORTS = {"ftp", "local"}


class Settings(BaseSettings):
    """Application settings with validation.

    Loads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Feed transport
    feed_transport: str = Field(
        default="ftp",
        description="Where feed files come from: 'ftp' or 'local'"
    )

    feed_ftp_host: str = Field(
        default="localhost",
        description="Feed FTP server host"
    )

    feed_ftp_port: int = Field(
        default=21,
        ge=1,
        le=65535,
        description="Feed FTP server port"
    )

    feed_ftp_user: str = Field(
        default="anonymous",
        description="Feed FTP user"
    )

    feed_ftp_password: str = Field(
        default="",
        description="Feed FTP password"
    )

    feed_ftp_directory: str = Field(
        default="/",
        description="Remote directory holding the feed files"
    )

    feed_ftp_passive: bool = Field(
        default=True,
        description="Use passive mode for FTP data connections"
    )

    feed_local_dir: str = Field(
        default="data/feeds",
        description="Local feed directory (local transport and download archive)"
    )

    feed_archive_downloads: bool = Field(
        default=False,
        description="Keep a copy of every downloaded feed file in feed_local_dir"
    )

    feed_timeout_seconds: float = Field(
        default=60.0,
        ge=0.1,
        le=3600.0,
        description="Timeout applied to every transport operation"
    )

    # Retry Configuration (applied by the ingestor, never inside the transport)
    feed_fetch_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Fetch attempts per refresh cycle for retryable transport failures"
    )

    feed_retry_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff factor between fetch attempts"
    )

    feed_retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=300.0,
        description="Delay before the first fetch retry in seconds"
    )

    # On-demand lookups
    lookup_upstream_timeout_seconds: float = Field(
        default=300.0,
        ge=1.0,
        le=3600.0,
        description="Limit for one shared upstream load on a cache miss (all fetch attempts included)"
    )

    # Scheduling
    feed_cron_schedule: str = Field(
        default="0 6 * * *",
        description="Five-field cron expression for the scheduled refresh"
    )

    feed_timezone: str = Field(
        default="Europe/Madrid",
        description="Timezone the cron expression is evaluated in"
    )

    feed_scheduler_enabled: bool = Field(
        default=True,
        description="Start the refresh timer with the application"
    )

    # Cache namespaces (default TTLs in seconds)
    cache_ttl_properties: int = Field(default=1800, ge=1)
    cache_ttl_images: int = Field(default=3600, ge=1)
    cache_ttl_campaign_content: int = Field(default=3600, ge=1)
    cache_ttl_feed_meta: int = Field(default=86400, ge=1)

    # Partner API (OPTIONAL)
    partner_api_base_url: str = Field(
        default="https://partners-sandbox.idealista.com",
        description="Base URL of the partner REST API"
    )

    partner_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the partner API; unset disables it"
    )

    partner_api_feed_key: Optional[str] = Field(
        default=None,
        description="Feed key header sent to the partner API"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @field_validator("feed_transport")
    @classmethod
    def validate_feed_transport(cls, v: str) -> str:
        v_lower = v.lower().strip()
        if v_lower not in VALID_TRANSPORTS:
            raise ValueError(f"feed_transport must be one of {VALID_TRANSPORTS}")
        return v_lower

    @field_validator("feed_cron_schedule")
    @classmethod
    def validate_cron_schedule(cls, v: str) -> str:
        """Reject schedules APScheduler cannot parse."""
        validate_cron_expression(v)
        return v.strip()

    def cache_namespace_ttls(self) -> Dict[str, int]:
        """
        Default TTL per cache namespace.

        Returns:
            Mapping of namespace name to default TTL in seconds
        """
        return {
            "properties": self.cache_ttl_properties,
            "images": self.cache_ttl_images,
            "campaign-content": self.cache_ttl_campaign_content,
            "feed-meta": self.cache_ttl_feed_meta,
        }

    def partner_api_enabled(self) -> bool:
        """True when a partner API token is configured."""
        return bool(self.partner_api_token)


# Global settings instance
# Configuration only: services are built by the composition root
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    This pattern allows:
    - Easy testing (can reset settings between tests)
    - Lazy loading (only loads when first accessed)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """
    Reset the global settings instance.

    Useful for testing to ensure clean state between tests.
    """
    global _settings
    _settings = None
