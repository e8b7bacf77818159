"""Configuration settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from carbooking.services.pricing import PricingConfig


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "postgresql+asyncpg://localhost/carbooking"
    store_timeout_seconds: float = 5.0
    store_retry_attempts: int = 3

    # Redis (payment event ledger)
    redis_url: str = "redis://localhost:6379/0"
    redis_event_ttl_seconds: int = 7 * 24 * 3600

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    # Pricing
    currency: str = "aed"
    currency_exponent: int = 2

    # Booking lifecycle
    pending_expiry_hours: int = 24

    # Background Jobs
    expiration_check_interval_seconds: int = 60

    # Security
    admin_user_ids: list[str] = []

    # Logging
    log_level: str = "INFO"

    # Application
    app_name: str = "carbooking"
    environment: str = "development"

    def pricing_config(self) -> PricingConfig:
        """Build the pricing value object handed to the calculator."""
        return PricingConfig(
            currency=self.currency,
            minor_unit_exponent=self.currency_exponent,
        )


def load_settings() -> Settings:
    """Load and validate settings from environment."""
    return Settings()
