"""
ORM models.

- City: id comes from the upstream provider's location id, name is unique
- WeatherData: weather snapshot for a city (temp/feels_like/humidity plus the
  full unified weather object as JSON)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class City(Base):
    __tablename__ = "cities"

    # Set from the provider's location id; the database only assigns one
    # when the provider does not report an id
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    weather_data: Mapped[List["WeatherData"]] = relationship(
        back_populates="city", cascade="all, delete-orphan", order_by="WeatherData.timestamp"
    )


class WeatherData(Base):
    __tablename__ = "weather_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))
    temp: Mapped[float] = mapped_column(Float)
    feels_like: Mapped[float] = mapped_column(Float)
    humidity: Mapped[float] = mapped_column(Float)

    # Full UnifiedCurrentWeather payload
    main_data: Mapped[Any] = mapped_column(JSON)

    city_id: Mapped[int] = mapped_column(ForeignKey("cities.id", ondelete="CASCADE"), index=True)
    city: Mapped[City] = relationship(back_populates="weather_data")
