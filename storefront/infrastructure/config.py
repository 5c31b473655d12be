"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Storage ("memory" or "database")
    storage_backend: str = "memory"
    database_url: str = "sqlite+aiosqlite:///./storefront.db"

    # Authentication (shared with the auth service that issues tokens)
    auth_token_secret: str = "dev-auth-secret-change-in-production"

    # Payment gateway ("sandbox" or "braintree")
    payment_gateway: str = "sandbox"
    payment_environment: str = "sandbox"
    payment_merchant_id: str = "sandbox-merchant"
    payment_public_key: str = "sandbox-public-key"
    payment_private_key: str = "sandbox-private-key"
    gateway_timeout_seconds: float = 5.0
    client_token_ttl_seconds: int = 900

    # Checkout sessions idle longer than this are dropped
    checkout_session_ttl_seconds: int = 3600

    # Logging
    log_level: str = "INFO"


settings = Settings()
