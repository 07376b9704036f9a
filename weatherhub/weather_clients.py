"""
Weather clients.

OpenWeatherMap adapters that turn the upstream payloads into the unified
shapes from schemas.py. Each provider composes a ResilientFetcher for the
cache / retry / breaker / fallback plumbing and only supplies:
- request parameters per endpoint
- a cache kind
- the transform into the unified shape
- the whole-object default used when the request failed entirely

Endpoints used:
- Geocoding:      /geo/1.0/direct?q=...&limit=1&appid=KEY
- Current (2.5):  /data/2.5/weather?q=...&units=metric&appid=KEY
- Current (3.0):  /data/3.0/onecall?lat=...&lon=...&exclude=...&appid=KEY
- Day summary:    /data/3.0/onecall/day_summary?lat=...&lon=...&date=YYYY-MM-DD&appid=KEY
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from .errors import NotFoundError, UnsupportedOperationError, UpstreamError
from .fetcher import ResilientFetcher
from .schemas import (
    AfternoonValue,
    CityRef,
    GeoLocation,
    PrecipitationSummary,
    TemperatureSummary,
    UnifiedCurrentWeather,
    UnifiedDaySummary,
    WeatherCondition,
    WindMax,
    WindSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

METRIC = "metric"

UNAVAILABLE_CONDITION = WeatherCondition(
    id=0, main="Unavailable", description="Weather data unavailable", icon="01d"
)
UNKNOWN_CONDITION = WeatherCondition(
    id=0, main="Unknown", description="Weather data unavailable", icon="01d"
)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def last_7_dates(today: date) -> List[str]:
    """Today followed by the six previous days, newest first."""
    return [(today - timedelta(days=i)).isoformat() for i in range(7)]


def _day_timestamp(day: str) -> int:
    return int(datetime.fromisoformat(day).replace(tzinfo=timezone.utc).timestamp())


def _num(value: Any) -> float:
    """Numeric upstream field, 0 when absent."""
    return value if isinstance(value, (int, float)) else 0


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    return data.get(name) or {}


def _transform(what: str, target: str, transform: Callable[..., T], *args: Any) -> T:
    """Run a transform; a 200 body of unexpected shape counts as an upstream failure."""
    try:
        return transform(*args)
    except (AttributeError, TypeError, ValueError) as exc:
        raise UpstreamError(f"Unexpected {what} payload for {target}: {exc}") from exc


def _conditions(raw: Any) -> List[WeatherCondition]:
    items = raw if isinstance(raw, list) else []
    return [
        WeatherCondition(**{k: v for k, v in item.items() if v is not None})
        for item in items
        if isinstance(item, dict)
    ]


class WeatherProvider(Protocol):
    """A source of unified weather data for a city."""

    async def get_current_weather(self, city: CityRef) -> UnifiedCurrentWeather:
        ...

    async def get_last_7_days_weather(self, city: CityRef) -> List[UnifiedDaySummary]:
        ...


# ---------------------------------------------------------------------
# Whole-object defaults (the request failed entirely)
# ---------------------------------------------------------------------

def default_current_weather(city: CityRef, now: Optional[float] = None) -> UnifiedCurrentWeather:
    now = time.time() if now is None else now
    return UnifiedCurrentWeather(
        location_name=city.name,
        location_id=city.id,
        date=datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat(),
        datetime=int(now),
        weather=[UNAVAILABLE_CONDITION],
    )


def default_last_7_days(city: CityRef, today: Optional[date] = None) -> List[UnifiedDaySummary]:
    days = last_7_dates(today or utc_today())
    return [
        UnifiedDaySummary(
            location_name=city.name,
            location_id=city.id,
            date=day,
            datetime=_day_timestamp(day),
        )
        for day in days
    ]


def _dump(model: Any) -> Any:
    return model.model_dump()


def _dump_days(days: List[UnifiedDaySummary]) -> List[Dict[str, Any]]:
    return [d.model_dump() for d in days]


def _load_days(payload: List[Dict[str, Any]]) -> List[UnifiedDaySummary]:
    return [UnifiedDaySummary.model_validate(d) for d in payload]


# ---------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------

class GeocodingService:
    """
    City name -> first geocoding match (lat/lon/country).

    Runs through its own fetcher (own breaker), since geocoding fails
    independently of the weather endpoints. An empty result list means the
    city does not exist and raises NotFoundError; transient failures fall
    back to a stale entry or propagate.
    """

    def __init__(self, fetcher: ResilientFetcher, api_key: str,
                 base: str = "https://api.openweathermap.org"):
        self.fetcher = fetcher
        self.api_key = api_key
        self.base = base
        if not api_key:
            logger.warning("OPENWEATHER_API_KEY not found. Geocoding API calls will fail.")

    async def get_coordinates(self, city_name: str) -> GeoLocation:
        async def produce() -> GeoLocation:
            data = await self.fetcher.get_json(
                f"{self.base}/geo/1.0/direct",
                {"q": city_name, "limit": 1, "appid": self.api_key},
            )
            if not isinstance(data, list) or not data:
                raise NotFoundError(f"City not found: {city_name}")
            best = data[0]
            try:
                return GeoLocation(
                    lat=float(best["lat"]),
                    lon=float(best["lon"]),
                    country=best.get("country") or "N/A",
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise UpstreamError(f"Malformed geocoding result for {city_name}") from exc

        return await self.fetcher.fetch(
            "direct", city_name, produce,
            load=GeoLocation.model_validate, dump=_dump,
        )


# ---------------------------------------------------------------------
# OpenWeatherMap 2.5
# ---------------------------------------------------------------------

class OpenWeatherMapV2Provider:
    """
    Current weather from the 2.5 API, looked up by city name.

    The 2.5 API has no historical data, so the 7-day summary is unsupported.
    """

    def __init__(self, fetcher: ResilientFetcher, api_key: str,
                 base: str = "https://api.openweathermap.org/data/2.5",
                 clock: Callable[[], float] = time.time):
        self.fetcher = fetcher
        self.api_key = api_key
        self.base = base
        self._clock = clock
        if not api_key:
            logger.warning(
                "OPENWEATHER_API_KEY not found in environment variables. Weather API calls will fail."
            )

    async def get_current_weather(self, city: CityRef) -> UnifiedCurrentWeather:
        async def produce() -> UnifiedCurrentWeather:
            data = await self.fetcher.get_json(
                f"{self.base}/weather",
                {"q": city.name, "appid": self.api_key, "units": METRIC},
            )
            return _transform("current weather", city.name, self.transform_current, data, city)

        return await self.fetcher.fetch(
            "v2", city.name, produce,
            default=lambda: default_current_weather(city, self._clock()),
            load=UnifiedCurrentWeather.model_validate, dump=_dump,
        )

    async def get_last_7_days_weather(self, city: CityRef) -> List[UnifiedDaySummary]:
        logger.error("get_last_7_days_weather not supported by the OpenWeatherMap 2.5 API")
        raise UnsupportedOperationError("Historical weather data not available in this API version")

    def transform_current(self, data: Dict[str, Any], city: CityRef) -> UnifiedCurrentWeather:
        coord = _section(data, "coord")
        sys = _section(data, "sys")
        main = _section(data, "main")
        wind = _section(data, "wind")
        now = self._clock()

        conditions = _conditions(data.get("weather"))
        return UnifiedCurrentWeather(
            lat=_num(coord.get("lat")),
            lon=_num(coord.get("lon")),
            location_name=city.name,
            location_id=data.get("id") or city.id,
            country=sys.get("country") or "N/A",
            timezone="UTC",
            timezone_offset=int(_num(data.get("timezone"))),
            date=datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat(),
            datetime=int(_num(data.get("dt")) or now),
            sunrise=int(_num(sys.get("sunrise"))),
            sunset=int(_num(sys.get("sunset"))),
            units=METRIC,
            temp=_num(main.get("temp")),
            feels_like=_num(main.get("feels_like")),
            pressure=_num(main.get("pressure")),
            humidity=_num(main.get("humidity")),
            clouds=_num(_section(data, "clouds").get("all")),
            visibility=_num(data.get("visibility")),
            wind_speed=_num(wind.get("speed")),
            wind_deg=_num(wind.get("deg")),
            # 2.5 lists the primary condition first; keep only that one
            weather=conditions[:1] or [UNKNOWN_CONDITION],
        )


# ---------------------------------------------------------------------
# OpenWeatherMap One Call 3.0
# ---------------------------------------------------------------------

class OpenWeatherMapV3Provider:
    """
    One Call 3.0: needs coordinates, so every lookup geocodes first.

    - current weather: one call with minutely/hourly/daily/alerts excluded
    - last 7 days: seven concurrent day_summary calls, best effort
    """

    def __init__(self, fetcher: ResilientFetcher, geocoder: GeocodingService, api_key: str,
                 base: str = "https://api.openweathermap.org/data/3.0/onecall",
                 clock: Callable[[], float] = time.time,
                 today: Callable[[], date] = utc_today):
        self.fetcher = fetcher
        self.geocoder = geocoder
        self.api_key = api_key
        self.base = base
        self._clock = clock
        self._today = today
        if not api_key:
            logger.warning(
                "OPENWEATHER_API_KEY not found in environment variables. Weather API calls will fail."
            )

    async def get_current_weather(self, city: CityRef) -> UnifiedCurrentWeather:
        async def produce() -> UnifiedCurrentWeather:
            geo = await self.geocoder.get_coordinates(city.name)
            data = await self.fetcher.get_json(
                self.base,
                {
                    "lat": geo.lat,
                    "lon": geo.lon,
                    "appid": self.api_key,
                    "exclude": "minutely,hourly,daily,alerts",
                    "units": METRIC,
                },
            )
            return _transform("current weather", city.name, self.transform_current, data, city, geo)

        return await self.fetcher.fetch(
            "v3", city.name, produce,
            default=lambda: default_current_weather(city, self._clock()),
            load=UnifiedCurrentWeather.model_validate, dump=_dump,
        )

    async def get_last_7_days_weather(self, city: CityRef) -> List[UnifiedDaySummary]:
        async def produce() -> List[UnifiedDaySummary]:
            geo = await self.geocoder.get_coordinates(city.name)

            def day_call(day: str):
                # A day whose body cannot be transformed fails alone
                async def call() -> UnifiedDaySummary:
                    data = await self.fetcher.get_json(
                        f"{self.base}/day_summary",
                        {"lat": geo.lat, "lon": geo.lon, "appid": self.api_key,
                         "date": day, "units": METRIC},
                    )
                    return _transform("day summary", f"{city.name} on {day}",
                                      self.transform_day, data, city, geo, day)

                return call

            outcomes = await self.fetcher.gather(
                {day: day_call(day) for day in last_7_dates(self._today())}
            )
            days = [o.value for o in outcomes if o.ok]
            if not days:
                raise UpstreamError(f"No day summaries available for {city.name}")
            if len(days) < len(outcomes):
                logger.warning(
                    "Returning %d of %d day summaries for %s", len(days), len(outcomes), city.name
                )
            return days

        return await self.fetcher.fetch(
            "last7days", city.name, produce,
            default=lambda: default_last_7_days(city, self._today()),
            load=_load_days, dump=_dump_days,
        )

    def transform_current(self, data: Dict[str, Any], city: CityRef, geo: GeoLocation) -> UnifiedCurrentWeather:
        current = _section(data, "current")
        now = self._clock()
        return UnifiedCurrentWeather(
            lat=geo.lat,
            lon=geo.lon,
            location_name=city.name,
            location_id=city.id,
            country=geo.country or "N/A",
            timezone=data.get("timezone") or "UTC",
            timezone_offset=int(_num(data.get("timezone_offset"))),
            date=datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat(),
            datetime=int(_num(current.get("dt")) or now),
            sunrise=int(_num(current.get("sunrise"))),
            sunset=int(_num(current.get("sunset"))),
            units=METRIC,
            temp=_num(current.get("temp")),
            feels_like=_num(current.get("feels_like")),
            pressure=_num(current.get("pressure")),
            humidity=_num(current.get("humidity")),
            dew_point=_num(current.get("dew_point")),
            uvi=_num(current.get("uvi")),
            clouds=_num(current.get("clouds")),
            visibility=_num(current.get("visibility")),
            wind_speed=_num(current.get("wind_speed")),
            wind_deg=_num(current.get("wind_deg")),
            weather=_conditions(current.get("weather")) or [UNKNOWN_CONDITION],
        )

    def transform_day(self, data: Dict[str, Any], city: CityRef, geo: GeoLocation,
                      requested_date: str = "") -> UnifiedDaySummary:
        temperature = _section(data, "temperature")
        wind_max = _section(_section(data, "wind"), "max")
        day = data.get("date") or requested_date
        return UnifiedDaySummary(
            lat=geo.lat,
            lon=geo.lon,
            location_name=city.name,
            location_id=city.id,
            country=geo.country or "N/A",
            timezone="UTC",
            timezone_offset=0,
            date=day,
            datetime=_day_timestamp(day) if day else 0,
            # day_summary has no sunrise/sunset
            sunrise=0,
            sunset=0,
            units=data.get("units") or METRIC,
            temperature=TemperatureSummary(
                min=_num(temperature.get("min")),
                max=_num(temperature.get("max")),
                afternoon=_num(temperature.get("afternoon")),
                night=_num(temperature.get("night")),
                evening=_num(temperature.get("evening") if "evening" in temperature
                             else temperature.get("afternoon")),
                morning=_num(temperature.get("morning")),
            ),
            pressure=AfternoonValue(afternoon=_num(_section(data, "pressure").get("afternoon"))),
            humidity=AfternoonValue(afternoon=_num(_section(data, "humidity").get("afternoon"))),
            cloud_cover=AfternoonValue(afternoon=_num(_section(data, "cloud_cover").get("afternoon"))),
            precipitation=PrecipitationSummary(total=_num(_section(data, "precipitation").get("total"))),
            wind=WindSummary(max=WindMax(
                speed=_num(wind_max.get("speed")),
                direction=_num(wind_max.get("direction")),
            )),
        )
