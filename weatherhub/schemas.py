"""
Pydantic schemas.

Two groups:
- Unified weather shapes produced by the providers. They are immutable and
  never partially filled: every field has an explicit default, so a missing
  upstream field becomes 0 / 'N/A' / 'UTC' instead of being left out.
- Payloads of the REST endpoints (cities).
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class WeatherCondition(_Frozen):
    """One entry of the upstream "weather" list."""
    id: int = 0
    main: str = "Unknown"
    description: str = "Weather data unavailable"
    icon: str = "01d"


class GeoLocation(_Frozen):
    """First geocoding match for a city name."""
    lat: float
    lon: float
    country: str = "N/A"


class CityRef(_Frozen):
    """What a provider needs to know about a city."""
    name: str
    id: int = 0


class BaseInfo(_Frozen):
    """Location and time fields shared by current weather and day summaries."""
    lat: float = 0
    lon: float = 0
    location_name: str
    location_id: int = 0
    country: str = "N/A"
    timezone: str = "UTC"
    timezone_offset: int = 0
    date: str = ""  # YYYY-MM-DD
    datetime: int = 0  # unix timestamp
    sunrise: int = 0
    sunset: int = 0
    units: str = "metric"


class UnifiedCurrentWeather(BaseInfo):
    temp: float = 0
    feels_like: float = 0
    pressure: float = 0
    humidity: float = 0
    dew_point: float = 0
    uvi: float = 0
    clouds: float = 0
    visibility: float = 0
    wind_speed: float = 0
    wind_deg: float = 0
    weather: List[WeatherCondition] = Field(default_factory=lambda: [WeatherCondition()])


class AfternoonValue(_Frozen):
    afternoon: float = 0


class PrecipitationSummary(_Frozen):
    total: float = 0


class TemperatureSummary(_Frozen):
    min: float = 0
    max: float = 0
    afternoon: float = 0
    night: float = 0
    evening: float = 0
    morning: float = 0


class WindMax(_Frozen):
    speed: float = 0
    direction: float = 0


class WindSummary(_Frozen):
    max: WindMax = WindMax()


class UnifiedDaySummary(BaseInfo):
    cloud_cover: AfternoonValue = AfternoonValue()
    humidity: AfternoonValue = AfternoonValue()
    precipitation: PrecipitationSummary = PrecipitationSummary()
    pressure: AfternoonValue = AfternoonValue()
    temperature: TemperatureSummary = TemperatureSummary()
    wind: WindSummary = WindSummary()


# -------------------------
# REST payloads
# -------------------------

class CityCreate(BaseModel):
    """Payload for registering a city."""
    name: str = Field(..., min_length=1, max_length=255)


class WeatherSnapshotOut(BaseModel):
    """Stored weather for a city; main_data is only included on request."""
    temp: float
    feels_like: float
    humidity: float
    timestamp: Optional[Any] = None
    main_data: Optional[Any] = None

    model_config = ConfigDict(from_attributes=True)


class CityOut(BaseModel):
    id: int
    name: str
    weather_data: List[WeatherSnapshotOut] = []

    model_config = ConfigDict(from_attributes=True)
