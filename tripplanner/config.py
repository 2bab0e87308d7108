"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

ALL_PRODUCERS = ["flight", "lodging", "dining", "activity", "local_transport"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (unset -> in-memory document store)
    database_url: str | None = None

    # Trip defaults
    default_currency: str = "USD"

    # Producer allow-list
    enabled_producers: list[str] = list(ALL_PRODUCERS)

    # Top-N kept by summarize, per producer type
    producer_max_results: dict[str, int] = {
        "flight": 10,
        "lodging": 15,
        "dining": 12,
        "activity": 10,
        "local_transport": 8,
    }

    # Provider endpoints (producer type -> base URL); missing -> bundled fixtures
    provider_base_urls: dict[str, str] = {}

    # Timeouts (milliseconds)
    provider_timeout_ms: int = 4000

    # Retries
    provider_retry_count: int = 1
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500

    # Circuit breaker
    circuit_breaker_failures: int = 5
    circuit_breaker_window_sec: int = 60
    circuit_breaker_half_open_sec: int = 30

    # Fallback result sets
    provider_fallback_enabled: bool = False
    fallback_max_results: int = 3

    # Normalizer bounds
    name_max_length: int = 500
    description_max_length: int = 2000
    synthesized_name_length: int = 80


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
