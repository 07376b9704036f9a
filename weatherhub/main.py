"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- wiring together DB + weather service + background refresh
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from .settings import settings
from .db import Base, SessionLocal, engine, get_db
from .crud import create_city, last_7_days_for, list_cities, remove_city
from .errors import WeatherError
from .schemas import CityCreate, CityOut, CityRef, UnifiedCurrentWeather, UnifiedDaySummary
from .service import WeatherService, build_weather_service
from .tasks import run_periodic_refresh

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if not settings.openweather_api_key:
        logger.warning("OPENWEATHER_API_KEY is not set; weather lookups will degrade to defaults.")

    Base.metadata.create_all(bind=engine)

    # Weather service (constructed once; its breakers live as long as the app)
    app.state.weather_service = build_weather_service(settings)
    refresher = asyncio.create_task(
        run_periodic_refresh(SessionLocal, app.state.weather_service, settings.refresh_interval_seconds)
    )
    try:
        yield
    finally:
        refresher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await refresher
        await app.state.weather_service.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


def get_weather_service(request: Request) -> WeatherService:
    return request.app.state.weather_service


@app.exception_handler(WeatherError)
async def weather_error_handler(request: Request, exc: WeatherError):
    """Domain errors carry their own HTTP status (404, 409, 501, ...)."""
    logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def city_to_dict(city, full: bool = False) -> dict:
    """Basic snapshot fields by default; the full weather object on request."""
    out = CityOut.model_validate(city).model_dump()
    for snapshot in out["weather_data"]:
        if not full:
            snapshot.pop("main_data", None)
            snapshot.pop("timestamp", None)
    return out


# -------------------------
# Cities
# -------------------------

@app.post("/cities", status_code=201)
async def api_create_city(
    payload: CityCreate,
    db: Session = Depends(get_db),
    service: WeatherService = Depends(get_weather_service),
):
    """Register a city (404 if the provider does not know it, 409 if already stored)."""
    city = await create_city(db, payload, service)
    return city_to_dict(city)


@app.get("/cities")
def api_list_cities(limit: int = 100, offset: int = 0, db: Session = Depends(get_db)):
    """List cities with basic weather data."""
    return [city_to_dict(c) for c in list_cities(db, limit=limit, offset=offset)]


@app.get("/cities/weather")
def api_list_cities_with_weather(limit: int = 100, offset: int = 0, db: Session = Depends(get_db)):
    """List cities with the full stored weather object."""
    return [city_to_dict(c, full=True) for c in list_cities(db, limit=limit, offset=offset)]


@app.delete("/cities/{city_id}")
def api_remove_city(city_id: int, db: Session = Depends(get_db)):
    city = remove_city(db, city_id)
    return {"id": city.id, "name": city.name}


@app.get("/cities/{name}/weather", response_model=List[UnifiedDaySummary])
async def api_city_last_7_days(
    name: str,
    db: Session = Depends(get_db),
    service: WeatherService = Depends(get_weather_service),
):
    """Day summaries for the last 7 days (best effort)."""
    return await last_7_days_for(db, name, service)


# -------------------------
# Weather + ops
# -------------------------

@app.get("/weather/{name}", response_model=UnifiedCurrentWeather)
async def api_current_weather(name: str, service: WeatherService = Depends(get_weather_service)):
    """Current weather for any city name, stored or not."""
    return await service.get_current_weather(CityRef(name=name))


@app.get("/health")
def api_health(service: WeatherService = Depends(get_weather_service)):
    """Circuit breaker states per upstream."""
    breakers = service.diagnostics()
    degraded = any(b["state"] != "closed" for b in breakers.values())
    return {"status": "degraded" if degraded else "ok", "breakers": breakers}


@app.get("/metrics")
def api_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
