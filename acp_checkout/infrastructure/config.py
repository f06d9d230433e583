"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    commerce_api_version: str = "2025-09-29"
    debug: bool = False

    # Authentication
    acp_api_key: str = "dev-api-key-change-in-production"

    # Idempotency
    idempotency_ttl_seconds: int = 300
    idempotency_poll_attempts: int = 10
    idempotency_poll_interval_seconds: float = 0.1

    # Stripe
    stripe_enabled: bool = False
    stripe_api_key: str = ""
    stripe_account_id: str = "acct_TEST123"
    stripe_connect_account: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    # Pricing
    tax_rate_bps: int = 1000
    ship_standard_cents: int = 100
    ship_express_cents: int = 1500
    default_unit_price_cents: int = 100
    catalog_path: str = ""

    # Merchant links
    tos_url: str = ""
    privacy_url: str = ""
    returns_url: str = ""
    order_permalink_base_url: str = "https://merchant.example.com/orders/"

    # Order event notifications
    notifier_webhook_url: str = ""
    notifier_webhook_secret: str = ""
    notifier_timeout_seconds: float = 5.0

    # Debug endpoints
    debug_bind_enabled: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
