"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")
    maintenance_mode: bool = Field(default=False, description="Reject non-admin API traffic with 503")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="The Babel Edit <orders@thebabeledit.com>",
        description="From address for transactional emails",
    )
    company_email: str = Field(
        default="support@thebabeledit.com",
        description="Inbox that receives new-order notifications",
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for email links",
    )

    # Pricing
    tax_rate: Decimal = Field(default=Decimal("0.08"), description="Flat tax rate applied to the subtotal")
    free_shipping_threshold: Decimal = Field(
        default=Decimal("100"),
        description="Subtotal above which shipping is free",
    )
    flat_shipping_fee: Decimal = Field(default=Decimal("10"), description="Shipping fee below the threshold")
    total_mismatch_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        description="Client/server total difference that is logged as a mismatch",
    )

    # Database transactions
    transaction_timeout_seconds: int = Field(
        default=30,
        description="How long order transactions wait for a row lock before failing",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_configured(self) -> bool:
        """Check if a Stripe secret key is present."""
        return bool(self.stripe_secret_key)

    @property
    def transaction_timeout_ms(self) -> int:
        """Lock wait timeout in milliseconds passed to the order database functions."""
        return self.transaction_timeout_seconds * 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
