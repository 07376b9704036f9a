"""
Background refresh of every stored city.

Runs once when the app starts and then every REFRESH_INTERVAL_SECONDS.
One failing city is logged and skipped; it never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from .crud import list_cities, replace_snapshot
from .errors import WeatherError
from .schemas import CityRef
from .service import WeatherService

logger = logging.getLogger(__name__)


async def refresh_all_cities(session_factory: Callable[[], Session], service: WeatherService) -> int:
    """Replace the weather snapshot of every city. Returns how many were updated."""
    logger.info("Starting weather data update for all cities...")
    updated = 0
    db = session_factory()
    try:
        cities = list_cities(db, limit=10_000)
        logger.info("Found %d cities to update", len(cities))
        for city in cities:
            try:
                weather = await service.get_current_weather(CityRef(name=city.name, id=city.id))
                replace_snapshot(db, city, weather)
                updated += 1
                logger.info("Updated weather data for city: %s (ID: %s)", city.name, city.id)
            except WeatherError as exc:
                db.rollback()
                logger.error("Failed to update weather for city: %s (ID: %s): %s", city.name, city.id, exc)
    finally:
        db.close()
    logger.info("Completed weather data update (%d updated)", updated)
    return updated


async def run_periodic_refresh(
    session_factory: Callable[[], Session],
    service: WeatherService,
    interval_seconds: float,
) -> None:
    """Refresh now, then every `interval_seconds` until cancelled."""
    while True:
        try:
            await refresh_all_cities(session_factory, service)
        except Exception:
            logger.exception("Error during scheduled weather update")
        await asyncio.sleep(interval_seconds)
