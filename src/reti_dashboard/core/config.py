"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Node Configuration
    algod_url: str = "https://mainnet-api.4160.nodely.dev"
    algod_token: str = ""
    http_timeout_seconds: float = 30.0

    # Name Service
    nfd_api_url: str = "https://api.nf.domains"
    nfd_profile_url: str = "https://app.nf.domains/name"

    # Explorer
    explorer_account_url: str = "https://allo.info/account"

    # Protocol
    registry_app_id: int = 2714516089

    # Ledger gateway factory ("package.module:factory"), used by the CLI and web API
    ledger_gateway: str = ""

    # Cache Settings
    cache_ttl_seconds: int = 300  # 5 minutes
    cache_max_size: int = 1000

    # Query scheduling
    query_batch_size: int = 8
    query_batch_interval_ms: int = 1000
    staker_batch_size: int = 10

    class Config:
        env_prefix = "RETI_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
