"""
Weather service facade and wiring.

Builds, once per process:
- one shared httpx.AsyncClient
- one circuit breaker per upstream dependency (weather, geocoding)
- a ResilientFetcher per upstream
- the provider selected by WEATHER_PROVIDER
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from .cache import CacheStore, build_cache
from .errors import UpstreamNotFoundError
from .fetcher import ResilientFetcher
from .resilience import BreakerConfig, CircuitBreaker, RetryPolicy
from .schemas import CityRef, UnifiedCurrentWeather, UnifiedDaySummary
from .settings import ResilienceConfig, Settings
from .weather_clients import (
    GeocodingService,
    OpenWeatherMapV2Provider,
    OpenWeatherMapV3Provider,
    WeatherProvider,
)

logger = logging.getLogger(__name__)


class WeatherService:
    """
    What the rest of the app talks to.

    - get_current_weather: always a well-formed object; raises only
      NotFoundError when the city does not exist upstream
    - get_last_7_days_weather: partial or default list on upstream trouble
    """

    def __init__(
        self,
        provider: WeatherProvider,
        client: Optional[httpx.AsyncClient] = None,
        breakers: Optional[List[CircuitBreaker]] = None,
        cache: Optional[CacheStore] = None,
    ):
        self.provider = provider
        self._client = client
        self._cache = cache
        self.breakers = breakers or []

    async def get_current_weather(self, city: CityRef) -> UnifiedCurrentWeather:
        return await self.provider.get_current_weather(city)

    async def get_last_7_days_weather(self, city: CityRef) -> List[UnifiedDaySummary]:
        return await self.provider.get_last_7_days_weather(city)

    def diagnostics(self) -> Dict[str, dict]:
        return {b.name: b.diagnostics() for b in self.breakers}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        # MemoryCache holds nothing to release
        close_cache = getattr(self._cache, "aclose", None)
        if close_cache is not None:
            await close_cache()


def build_fetcher(
    name: str,
    namespace: str,
    client: httpx.AsyncClient,
    cache: CacheStore,
    config: ResilienceConfig,
) -> ResilientFetcher:
    breaker = CircuitBreaker(
        name,
        BreakerConfig(
            timeout_seconds=config.breaker_timeout_seconds,
            error_threshold_percent=config.breaker_error_threshold_percent,
            reset_timeout_seconds=config.breaker_reset_timeout_seconds,
            rolling_window_seconds=config.breaker_rolling_window_seconds,
            volume_threshold=config.breaker_volume_threshold,
        ),
        ignored_exceptions=(UpstreamNotFoundError,),
    )
    retry = RetryPolicy(
        max_retries=config.max_retries,
        initial_delay=config.retry_initial_delay_seconds,
        factor=config.retry_factor,
        giveup_on=(UpstreamNotFoundError,),
        name=name,
    )
    return ResilientFetcher(
        name=name,
        client=client,
        cache=cache,
        breaker=breaker,
        retry=retry,
        cache_ttl_seconds=config.cache_ttl_seconds,
        stale_ttl_seconds=config.stale_ttl_seconds,
        namespace=namespace,
    )


def build_weather_service(
    settings: Settings,
    cache: Optional[CacheStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> WeatherService:
    config = ResilienceConfig.from_settings(settings)
    cache = cache if cache is not None else build_cache(settings)
    # Per-call timeouts are enforced by the breakers; this one is a backstop.
    client = httpx.AsyncClient(timeout=config.breaker_timeout_seconds * 2, transport=transport)

    weather = build_fetcher("openweathermap", "weather", client, cache, config)

    if settings.weather_provider == "openweathermap-v2":
        provider: WeatherProvider = OpenWeatherMapV2Provider(weather, config.api_key)
        breakers = [weather.breaker]
    else:
        geo = build_fetcher("geocoding", "geo", client, cache, config)
        geocoder = GeocodingService(geo, config.api_key)
        provider = OpenWeatherMapV3Provider(weather, geocoder, config.api_key)
        breakers = [weather.breaker, geo.breaker]

    logger.info("Weather provider: %s", settings.weather_provider)
    return WeatherService(provider, client=client, breakers=breakers, cache=cache)
