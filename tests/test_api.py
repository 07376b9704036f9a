"""
Tests for the HTTP routes.

The lifespan is not entered: each test installs its own WeatherService on
app.state and an in-memory database through dependency overrides.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from weatherhub.db import get_db
from weatherhub.errors import UnsupportedOperationError, UpstreamError
from weatherhub.main import app
from weatherhub.resilience import CircuitBreaker
from weatherhub.service import WeatherService

from upstream import StubProvider


class NoHistoryProvider(StubProvider):
    async def get_last_7_days_weather(self, city):
        raise UnsupportedOperationError("Historical weather data not available in this API version")


@pytest.fixture
def make_client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def factory(provider=None, breakers=None) -> TestClient:
        app.state.weather_service = WeatherService(provider or StubProvider(), breakers=breakers)
        return TestClient(app)

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


class TestCityRoutes:
    def test_create_city(self, client):
        r = client.post("/cities", json={"name": "London"})

        assert r.status_code == 201
        assert r.json() == {
            "id": 2643743,
            "name": "London",
            "weather_data": [{"temp": 11.0, "feels_like": 9.0, "humidity": 70.0}],
        }

    def test_create_duplicate_city(self, client):
        client.post("/cities", json={"name": "London"})

        r = client.post("/cities", json={"name": "London"})

        assert r.status_code == 409
        assert r.json() == {"detail": "City already exists"}

    def test_create_unknown_city(self, client):
        r = client.post("/cities", json={"name": "Atlantis"})

        assert r.status_code == 404
        assert r.json() == {"detail": "City not found: Atlantis"}

    def test_create_city_requires_a_name(self, client):
        assert client.post("/cities", json={"name": ""}).status_code == 422

    def test_list_cities_basic_and_full(self, client):
        client.post("/cities", json={"name": "Paris"})
        client.post("/cities", json={"name": "London"})

        basic = client.get("/cities").json()
        full = client.get("/cities/weather").json()

        assert [c["name"] for c in basic] == ["London", "Paris"]
        assert "main_data" not in basic[0]["weather_data"][0]
        assert full[0]["weather_data"][0]["main_data"]["location_name"] == "London"
        assert full[0]["weather_data"][0]["timestamp"]

    def test_delete_city(self, client):
        city_id = client.post("/cities", json={"name": "London"}).json()["id"]

        r = client.delete(f"/cities/{city_id}")

        assert r.status_code == 200
        assert r.json() == {"id": city_id, "name": "London"}
        assert client.get("/cities").json() == []
        assert client.delete(f"/cities/{city_id}").status_code == 404


class TestWeatherRoutes:
    def test_current_weather(self, client):
        r = client.get("/weather/Paris")

        assert r.status_code == 200
        body = r.json()
        assert body["location_name"] == "Paris"
        assert body["location_id"] == 2988507
        assert body["country"] == "N/A"
        assert body["weather"][0]["description"] == "Weather data unavailable"

    def test_current_weather_unknown_city(self, client):
        r = client.get("/weather/Atlantis")

        assert r.status_code == 404
        assert r.json() == {"detail": "City not found: Atlantis"}

    def test_last_7_days(self, client):
        r = client.get("/cities/London/weather")

        assert r.status_code == 200
        assert [d["date"] for d in r.json()] == [
            "2025-05-10", "2025-05-09", "2025-05-08", "2025-05-07",
            "2025-05-06", "2025-05-05", "2025-05-04",
        ]

    def test_last_7_days_unsupported(self, make_client):
        r = make_client(NoHistoryProvider()).get("/cities/London/weather")

        assert r.status_code == 501


class TestOpsRoutes:
    def test_health_ok(self, make_client):
        client = make_client(breakers=[CircuitBreaker("openweathermap"), CircuitBreaker("geocoding")])

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert set(body["breakers"]) == {"openweathermap", "geocoding"}

    def test_health_degraded_when_breaker_open(self, make_client):
        breaker = CircuitBreaker("openweathermap")

        async def fail():
            raise UpstreamError("down")

        with pytest.raises(UpstreamError):
            asyncio.run(breaker.call(fail))

        body = make_client(breakers=[breaker]).get("/health").json()

        assert body["status"] == "degraded"
        assert body["breakers"]["openweathermap"]["state"] == "open"

    def test_metrics(self, client):
        r = client.get("/metrics")

        assert r.status_code == 200
        assert "weather_circuit_breaker_state" in r.text
