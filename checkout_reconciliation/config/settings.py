"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Gateway Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_api_version: str = Field(default="2023-10-16", description="Stripe API version")

    # Database Configuration
    database_url: str = Field(..., description="SQLAlchemy async database URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="checkout-reconciliation", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8080",
        description="CORS allowed origins (comma-separated)",
    )
    user_id_header: str = Field(
        default="X-User-ID",
        description="Header carrying the user id authenticated by the upstream gateway",
    )

    # Checkout
    currency: str = Field(default="USD", description="Checkout currency")
    checkout_session_ttl_minutes: int = Field(
        default=30, description="Minutes before an abandoned checkout session expires"
    )

    # Reconciliation bounds
    link_poll_max_attempts: int = Field(
        default=5, ge=1, description="Checkout link status polls per verification"
    )
    link_poll_delay_seconds: float = Field(
        default=1.5, ge=0, description="Delay between checkout link status polls"
    )
    gateway_retry_max_attempts: int = Field(
        default=2, ge=1, description="Attempts for a single gateway lookup on transport errors"
    )
    gateway_retry_delay_seconds: float = Field(
        default=0.5, ge=0, description="Delay between gateway lookup retries"
    )
    verification_deadline_seconds: float = Field(
        default=20.0, gt=0, description="Ceiling for one verification request (seconds)"
    )

    # Matching redirect id policy
    trusted_redirect_enabled: bool = Field(
        default=True,
        description="Accept identical payment/order ids from the gateway redirect as proof of payment",
    )
    trusted_redirect_id_pattern: str = Field(
        default=r"^[A-Za-z0-9_]{15,}$",
        description="Shape an opaque gateway id must have to be trusted",
    )

    # Cleanup
    cleanup_batch_size: int = Field(default=100, ge=1, description="Sessions per cleanup batch")
    cleanup_interval_seconds: int = Field(
        default=3600, ge=1, description="Seconds between cleanup worker passes"
    )
    expired_session_retention_hours: int = Field(
        default=168, ge=0, description="Hours to keep failed/expired sessions after expiry"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that the secret key is a test or live key."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def is_sqlite(self) -> bool:
        """SQLite engines take no pool sizing arguments."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
