"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings

# ===========================================
# Product Branding
# ===========================================
PRODUCT_NAME = "Brokersync"
PRODUCT_TAGLINE = "Brokerage connections and market data, kept in sync."
PRODUCT_VERSION = "1.0.0"
PRODUCT_DESCRIPTION = "Links brokerage accounts, reconciles positions and fetches market data."

# Provider that authenticates with a static API token instead of an OAuth code exchange
STATIC_TOKEN_PROVIDERS = frozenset({"trading212"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./brokersync.db"

    # Logging
    log_level: str = "INFO"

    # Outbound HTTP
    http_timeout_seconds: int = 30

    # Generic OAuth broker
    broker_api_base_url: str = ""
    broker_oauth_authorize_url: str = ""
    broker_oauth_token_url: str = ""
    broker_client_id: str = ""
    broker_client_secret: str = ""
    broker_default_scope: str = "accounts positions"
    broker_redirect_uri: str = ""

    # Trading212 (static API token)
    trading212_api_base_url: str = "https://live.trading212.com/api/v0"

    # Market Data
    alpha_vantage_api_key: str = ""
    finnhub_api_key: str = ""
    quote_provider_order: List[str] = ["alphavantage", "yfinance"]
    price_cache_seconds: int = 60
    quote_batch_delay_seconds: float = 12.0  # Alpha Vantage free tier: 5 calls/min

    # Historical backfill
    backfill_max_iterations: int = 200
    backfill_chunk_days: int = 365 * 5

    # Refresh batch
    refresh_batch_size: int = 10
    refresh_delay_ms: int = 500
    refresh_expiry_buffer_seconds: int = 300
    refresh_interval_seconds: int = 900

    # API Security
    cron_secret: str = ""  # Guards the refresh endpoint when set
    jwt_secret: str = ""  # Verifies caller identity on token submission

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
