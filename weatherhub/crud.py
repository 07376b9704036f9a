"""
CRUD functions for cities and their weather snapshots.

Kept apart from main.py so routing stays thin and these rules are easy to
unit test (duplicate names, provider ids, snapshot replacement).
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .errors import ConflictError, NotFoundError
from .schemas import CityCreate, CityRef, UnifiedCurrentWeather, UnifiedDaySummary
from .service import WeatherService

logger = logging.getLogger(__name__)


def _snapshot(weather: UnifiedCurrentWeather) -> models.WeatherData:
    return models.WeatherData(
        temp=weather.temp,
        feels_like=weather.feels_like,
        humidity=weather.humidity,
        main_data=weather.model_dump(),
    )


def get_city(db: Session, city_id: int) -> Optional[models.City]:
    return db.get(models.City, city_id)


def get_city_by_name(db: Session, name: str) -> Optional[models.City]:
    return db.scalars(select(models.City).where(models.City.name == name)).first()


def list_cities(db: Session, limit: int = 100, offset: int = 0) -> List[models.City]:
    return list(db.scalars(select(models.City).order_by(models.City.name).offset(offset).limit(limit)))


async def create_city(db: Session, payload: CityCreate, service: WeatherService) -> models.City:
    """
    Register a city:
    - reject duplicate names
    - fetch current weather (NotFoundError propagates for unknown cities)
    - store the city under the provider's location id, with a first snapshot
    """
    name = payload.name.strip()
    if get_city_by_name(db, name):
        raise ConflictError("City already exists")

    weather = await service.get_current_weather(CityRef(name=name, id=0))

    city = models.City(name=name)
    if weather.location_id:
        existing = get_city(db, weather.location_id)
        if existing:
            raise ConflictError(f"City already exists as '{existing.name}'")
        city.id = weather.location_id
    else:
        logger.warning("Provider reported no location id for %s; assigning a local id", name)

    city.weather_data.append(_snapshot(weather))
    db.add(city)
    db.commit()
    db.refresh(city)
    return city


def remove_city(db: Session, city_id: int) -> models.City:
    city = get_city(db, city_id)
    if not city:
        raise NotFoundError(f"City with ID {city_id} not found")
    db.delete(city)
    db.commit()
    return city


def replace_snapshot(db: Session, city: models.City, weather: UnifiedCurrentWeather) -> None:
    """Keep a single live snapshot per city: drop the old ones, add the new one."""
    city.weather_data.clear()
    city.weather_data.append(_snapshot(weather))
    db.commit()


async def last_7_days_for(db: Session, name: str, service: WeatherService) -> List[UnifiedDaySummary]:
    """
    7-day summaries for a city by name.

    Unknown cities are checked against the provider first, so a city that
    does not exist upstream is reported as NotFoundError.
    """
    city = get_city_by_name(db, name)
    if city:
        ref = CityRef(name=city.name, id=city.id)
    else:
        weather = await service.get_current_weather(CityRef(name=name, id=0))
        ref = CityRef(name=name, id=weather.location_id)
    return await service.get_last_7_days_weather(ref)
