"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Payment gateway
    bonum_url: str = Field(..., description="Gateway API base URL")
    bonum_terminal_id: str = Field(..., description="Terminal identifier sent on auth")
    bonum_app_secret: str = Field(..., description="Long-lived application secret")
    bonum_webhook_secret: str = Field(
        ..., min_length=1, description="Shared secret the gateway signs webhooks with"
    )
    credential_ttl_margin_seconds: int = Field(
        default=0, ge=0, description="Seconds shaved off the token TTL before caching"
    )
    invoice_expires_in: int = Field(
        default=1800, gt=0, description="Invoice lifetime requested from the gateway (seconds)"
    )
    invoice_link_cache_ttl: int = Field(
        default=1800, gt=0, description="How long a created checkout link is reused (seconds)"
    )
    http_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for every outbound HTTP call"
    )

    # Storefront
    storefront_url: str = Field(
        default="http://localhost:3000", description="Storefront origin used in callback URLs"
    )

    # Database Configuration
    database_url: str = Field(..., description="Async SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # Status polling
    status_api_url: str = Field(
        default="http://localhost:8000", description="Base URL of the status API the poller queries"
    )
    poll_interval_seconds: float = Field(
        default=5.0, gt=0, description="Delay between status queries"
    )
    poll_max_attempts: Optional[int] = Field(
        default=None,
        gt=0,
        description="Upper bound on status queries (defaults to invoice lifetime / interval)",
    )

    # Application Configuration
    app_name: str = Field(default="storefront-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("bonum_url")
    @classmethod
    def validate_bonum_url(cls, v: str) -> str:
        """Gateway paths are joined relative to the base, so it must end with a slash."""
        return v if v.endswith("/") else f"{v}/"

    @field_validator("storefront_url", "status_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def effective_poll_max_attempts(self) -> int:
        """Poll bound: explicit setting, else enough queries to outlive the invoice."""
        if self.poll_max_attempts is not None:
            return self.poll_max_attempts
        return max(int(self.invoice_expires_in // self.poll_interval_seconds), 1)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
