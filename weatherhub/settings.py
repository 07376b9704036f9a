from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables (OPENWEATHER_API_KEY, CACHE_TTL_SECONDS, ...)
    - .env file (if present)

    A missing API key does not stop the app from starting; upstream calls
    will fail and degrade to cached/default data instead.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    openweather_api_key: str = ""

    # Which OpenWeatherMap API generation serves weather lookups
    weather_provider: Literal["openweathermap-v2", "openweathermap-v3"] = "openweathermap-v3"

    # Cache
    cache_ttl_seconds: int = 3600
    stale_cache_ttl_seconds: int = 7 * 24 * 3600
    redis_url: Optional[str] = None

    # Retry policy
    api_max_retries: int = 3
    retry_initial_delay_ms: int = 500
    retry_backoff_factor: float = 2.0

    # Circuit breaker (one per upstream dependency)
    breaker_timeout_ms: int = 5000
    breaker_error_threshold_percent: float = 50.0
    breaker_reset_timeout_ms: int = 10000
    breaker_rolling_window_ms: int = 10000
    breaker_volume_threshold: int = 0

    app_name: str = "Weather Hub"
    log_level: str = "INFO"

    # SQLite file path (simple local persistence)
    sqlite_path: str = "weatherhub.sqlite3"

    # Background refresh of all stored cities
    refresh_interval_seconds: int = 3600


@dataclass(frozen=True)
class ResilienceConfig:
    """Options of the resilient fetch pipeline, resolved once from Settings."""
    api_key: str = ""
    cache_ttl_seconds: int = 3600
    stale_ttl_seconds: int = 7 * 24 * 3600
    max_retries: int = 3
    retry_initial_delay_seconds: float = 0.5
    retry_factor: float = 2.0
    breaker_timeout_seconds: float = 5.0
    breaker_error_threshold_percent: float = 50.0
    breaker_reset_timeout_seconds: float = 10.0
    breaker_rolling_window_seconds: float = 10.0
    breaker_volume_threshold: int = 0

    @classmethod
    def from_settings(cls, s: Settings) -> "ResilienceConfig":
        return cls(
            api_key=s.openweather_api_key,
            cache_ttl_seconds=s.cache_ttl_seconds,
            stale_ttl_seconds=s.stale_cache_ttl_seconds,
            max_retries=s.api_max_retries,
            retry_initial_delay_seconds=s.retry_initial_delay_ms / 1000,
            retry_factor=s.retry_backoff_factor,
            breaker_timeout_seconds=s.breaker_timeout_ms / 1000,
            breaker_error_threshold_percent=s.breaker_error_threshold_percent,
            breaker_reset_timeout_seconds=s.breaker_reset_timeout_ms / 1000,
            breaker_rolling_window_seconds=s.breaker_rolling_window_ms / 1000,
            breaker_volume_threshold=s.breaker_volume_threshold,
        )


settings = Settings()
