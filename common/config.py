"""Centralized application configuration using Pydantic settings."""
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./bhavan.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    debug: bool = Field(default=False, description="Include error detail in 500 responses")
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    resource_cache_ttl: int = Field(default=60, description="TTL (s) for cached resource listings")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")

    razorpay_key_id: str = Field(default="rzp_test_key", description="Payment gateway public key id")
    razorpay_key_secret: str = Field(default="rzp_test_secret", description="Payment gateway secret, also the HMAC key")
    payment_currency: str = Field(default="INR", description="Currency for payment orders")
    payment_timeout_seconds: float = Field(default=10.0, description="Timeout for a single gateway call")

    pending_hold_minutes: int = Field(
        default=15,
        description="Minutes an unpaid pending booking keeps holding inventory during order creation",
    )
    cancellation_cutoff_hours: int = Field(
        default=24,
        description="Users may not cancel within this many hours of check-in",
    )
    default_gst_percentage: Decimal = Field(default=Decimal("18"), description="GST applied when a package sets none")
    booking_reference_prefix: str = Field(default="BHV", description="Prefix of booking reference codes")

    resources_service_port: int = 8001
    packages_service_port: int = 8002
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
