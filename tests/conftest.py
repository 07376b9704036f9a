"""
Shared fixtures for weatherhub tests.

- upstream APIs: httpx.MockTransport handlers
- database: in-memory SQLite engine per test
- retry backoff: a recording no-op sleep
- wall/monotonic clocks: FakeClock

No test waits on real time.
"""

import os
from typing import Callable, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE any application imports
os.environ.setdefault("OPENWEATHER_API_KEY", "test-key")
os.environ.setdefault("SQLITE_PATH", ":memory:")

from weatherhub import models  # noqa: E402,F401
from weatherhub.cache import MemoryCache  # noqa: E402
from weatherhub.db import Base  # noqa: E402
from weatherhub.errors import UpstreamNotFoundError  # noqa: E402
from weatherhub.fetcher import ResilientFetcher  # noqa: E402
from weatherhub.resilience import BreakerConfig, CircuitBreaker, RetryPolicy  # noqa: E402


class FakeClock:
    """Manually advanced clock usable as time.monotonic / time.time."""

    def __init__(self, start: float = 1_746_835_200.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def make_fetcher(cache, clock, sleep):
    """Factory building a ResilientFetcher around a mock upstream handler."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        name: str = "openweathermap",
        namespace: str = "weather",
        breaker_config: Optional[BreakerConfig] = None,
        max_retries: int = 3,
        cache_store=None,
    ) -> ResilientFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        breaker = CircuitBreaker(
            name,
            breaker_config or BreakerConfig(),
            ignored_exceptions=(UpstreamNotFoundError,),
            clock=clock,
        )
        retry = RetryPolicy(
            max_retries=max_retries,
            initial_delay=0.5,
            factor=2.0,
            giveup_on=(UpstreamNotFoundError,),
            sleep=sleep,
            name=name,
        )
        return ResilientFetcher(
            name=name,
            client=client,
            cache=cache_store if cache_store is not None else cache,
            breaker=breaker,
            retry=retry,
            cache_ttl_seconds=600,
            stale_ttl_seconds=86400,
            namespace=namespace,
        )

    return factory


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
