"""Storefront Billing – Application Configuration.

Pydantic Settings loaded from .env file or environment variables.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Gateway ---
    environment: str = "development"
    log_level: str = "info"
    gateway_host: str = "0.0.0.0"
    gateway_port: int = 8000
    cors_allowed_origins: str = "http://localhost:3000"

    # --- Database ---
    database_url: str = ""

    # --- Stripe ---
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""  # whsec_... used for HMAC signature verification
    stripe_webhook_tolerance_seconds: int = 300

    # --- Storefront URLs ---
    main_domain: str = "paginalocal.com.br"  # stores live on <slug>.<main_domain>

    # --- Google Indexing API ---
    google_indexing_credentials: str = ""  # service account JSON

    # --- Frontend revalidation (sitemap + category/city pages) ---
    revalidation_url: str = ""  # e.g. https://paginalocal.com.br/api/revalidate
    revalidation_secret: str = ""

    # --- Side effects ---
    side_effect_timeout_seconds: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Factory function for settings singleton."""
    return Settings()
