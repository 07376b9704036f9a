"""
Tests for city persistence and the background refresh.

Test coverage:
- create_city stores the provider's location id and a first snapshot
- Duplicate names / duplicate provider ids are conflicts
- Unknown cities are not stored
- Snapshot replacement and cascading deletes
- 7-day lookups for stored and unstored cities
- refresh_all_cities skips failing cities
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from weatherhub import models
from weatherhub.crud import (
    create_city,
    get_city_by_name,
    last_7_days_for,
    list_cities,
    remove_city,
    replace_snapshot,
)
from weatherhub.errors import ConflictError, NotFoundError
from weatherhub.schemas import CityCreate, UnifiedCurrentWeather
from weatherhub.service import WeatherService
from weatherhub.tasks import refresh_all_cities

from upstream import StubProvider


def snapshot_count(db) -> int:
    return db.scalar(select(func.count()).select_from(models.WeatherData))


class TestCreateCity:
    """Registering cities."""

    @pytest.mark.asyncio
    async def test_stores_provider_id_and_snapshot(self, db):
        service = WeatherService(StubProvider())

        city = await create_city(db, CityCreate(name="London"), service)

        assert city.id == 2643743
        assert city.name == "London"
        assert len(city.weather_data) == 1
        snapshot = city.weather_data[0]
        assert snapshot.temp == 11.0
        assert snapshot.humidity == 70
        assert snapshot.main_data["location_name"] == "London"
        assert snapshot.main_data["weather"][0]["main"] == "Unknown"

    @pytest.mark.asyncio
    async def test_snapshot_is_stamped_in_utc(self, db):
        city = await create_city(db, CityCreate(name="London"), WeatherService(StubProvider()))

        stamped = city.weather_data[0].timestamp
        now_utc = datetime.now(timezone.utc).replace(tzinfo=None)

        assert abs(now_utc - stamped.replace(tzinfo=None)) < timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_name_is_trimmed(self, db):
        city = await create_city(db, CityCreate(name="  Paris "), WeatherService(StubProvider()))

        assert city.name == "Paris"

    @pytest.mark.asyncio
    async def test_duplicate_name_is_a_conflict(self, db):
        provider = StubProvider()
        service = WeatherService(provider)
        await create_city(db, CityCreate(name="London"), service)

        with pytest.raises(ConflictError) as exc_info:
            await create_city(db, CityCreate(name="London"), service)

        assert exc_info.value.status_code == 409
        # Rejected before asking the provider again
        assert provider.calls == ["London"]

    @pytest.mark.asyncio
    async def test_same_provider_id_under_another_name_is_a_conflict(self, db):
        service = WeatherService(StubProvider(cities={"London": 2643743, "Londres": 2643743}))
        await create_city(db, CityCreate(name="London"), service)

        with pytest.raises(ConflictError, match="London"):
            await create_city(db, CityCreate(name="Londres"), service)

    @pytest.mark.asyncio
    async def test_unknown_city_is_not_stored(self, db):
        with pytest.raises(NotFoundError):
            await create_city(db, CityCreate(name="Atlantis"), WeatherService(StubProvider()))

        assert list_cities(db) == []

    @pytest.mark.asyncio
    async def test_local_id_when_provider_reports_none(self, db):
        service = WeatherService(StubProvider(cities={"Smallville": 0}))

        city = await create_city(db, CityCreate(name="Smallville"), service)

        assert city.id > 0
        assert get_city_by_name(db, "Smallville").id == city.id


class TestCityLifecycle:
    """Listing, snapshot replacement and removal."""

    @pytest.mark.asyncio
    async def test_list_is_ordered_and_paginated(self, db):
        service = WeatherService(StubProvider(cities={"Rome": 1, "Berlin": 2, "Madrid": 3}))
        for name in ("Rome", "Berlin", "Madrid"):
            await create_city(db, CityCreate(name=name), service)

        assert [c.name for c in list_cities(db)] == ["Berlin", "Madrid", "Rome"]
        assert [c.name for c in list_cities(db, limit=1, offset=1)] == ["Madrid"]

    @pytest.mark.asyncio
    async def test_replace_snapshot_keeps_a_single_one(self, db):
        city = await create_city(db, CityCreate(name="London"), WeatherService(StubProvider()))

        replace_snapshot(
            db, city, UnifiedCurrentWeather(location_name="London", temp=21.5, feels_like=20.0, humidity=40)
        )

        assert snapshot_count(db) == 1
        assert city.weather_data[0].temp == 21.5
        assert city.weather_data[0].main_data["temp"] == 21.5

    @pytest.mark.asyncio
    async def test_remove_city_deletes_snapshots(self, db):
        city = await create_city(db, CityCreate(name="London"), WeatherService(StubProvider()))

        removed = remove_city(db, city.id)

        assert removed.name == "London"
        assert list_cities(db) == []
        assert snapshot_count(db) == 0

    def test_remove_missing_city(self, db):
        with pytest.raises(NotFoundError, match="999"):
            remove_city(db, 999)


class TestLastSevenDays:
    """7-day lookups by city name."""

    @pytest.mark.asyncio
    async def test_stored_city_uses_stored_id(self, db):
        provider = StubProvider()
        service = WeatherService(provider)
        await create_city(db, CityCreate(name="Paris"), service)

        days = await last_7_days_for(db, "Paris", service)

        assert len(days) == 7
        assert {d.location_id for d in days} == {2988507}
        assert provider.calls == ["Paris"]

    @pytest.mark.asyncio
    async def test_unstored_city_is_resolved_upstream(self, db):
        provider = StubProvider()

        days = await last_7_days_for(db, "London", WeatherService(provider))

        assert days[0].location_id == 2643743
        assert provider.calls == ["London"]

    @pytest.mark.asyncio
    async def test_unknown_city_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            await last_7_days_for(db, "Atlantis", WeatherService(StubProvider()))


class TestRefreshAllCities:
    """Background refresh of every stored city."""

    @pytest.mark.asyncio
    async def test_refresh_replaces_snapshots(self, db, session_factory):
        service = WeatherService(StubProvider())
        await create_city(db, CityCreate(name="London"), service)
        await create_city(db, CityCreate(name="Paris"), service)

        updated = await refresh_all_cities(session_factory, service)

        assert updated == 2
        db.expire_all()
        assert snapshot_count(db) == 2
        temps = sorted(c.weather_data[0].temp for c in list_cities(db))
        assert temps == [13.0, 14.0]

    @pytest.mark.asyncio
    async def test_failing_city_is_skipped(self, db, session_factory):
        provider = StubProvider()
        service = WeatherService(provider)
        await create_city(db, CityCreate(name="London"), service)
        await create_city(db, CityCreate(name="Paris"), service)
        provider.failing.add("London")

        updated = await refresh_all_cities(session_factory, service)

        assert updated == 1
        db.expire_all()
        london = get_city_by_name(db, "London")
        paris = get_city_by_name(db, "Paris")
        assert [s.temp for s in london.weather_data] == [11.0]
        assert [s.temp for s in paris.weather_data] == [14.0]
