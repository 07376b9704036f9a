"""
Resilient fetch pipeline.

Wraps a flaky upstream HTTP dependency with:
- cache-aside lookups (namespace:kind:target keys)
- retry with exponential backoff around a circuit breaker
- graceful degradation: stale cache copy first, static default second

Providers compose a ResilientFetcher instead of inheriting these helpers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import httpx

from . import metrics
from .cache import CacheStore
from .errors import NotFoundError, UpstreamError, UpstreamNotFoundError, WeatherError
from .resilience import CircuitBreaker, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_SUFFIX = ":stale"


def _identity(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    """Result of one item of a best-effort batch: a value or the failure reason."""
    label: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_city_not_found(response: httpx.Response) -> bool:
    """True for a 404 whose JSON message says "city not found"."""
    if response.status_code != 404:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    message = body.get("message") if isinstance(body, dict) else None
    return isinstance(message, str) and "city not found" in message.lower()


class ResilientFetcher:
    """
    Cache + retry + circuit breaker + fallback for one upstream dependency.

    One instance per upstream (weather API, geocoding API); the breaker it
    holds is shared by every request going through it.
    """

    def __init__(
        self,
        *,
        name: str,
        client: httpx.AsyncClient,
        cache: CacheStore,
        breaker: CircuitBreaker,
        retry: RetryPolicy,
        cache_ttl_seconds: int = 3600,
        stale_ttl_seconds: int = 7 * 24 * 3600,
        namespace: str = "weather",
    ):
        self.name = name
        self.client = client
        self.cache = cache
        self.breaker = breaker
        self.retry = retry
        self.cache_ttl_seconds = cache_ttl_seconds
        self.stale_ttl_seconds = stale_ttl_seconds
        self.namespace = namespace

    def cache_key(self, kind: str, target: str) -> str:
        return f"{self.namespace}:{kind}:{target.strip().lower()}"

    # ------------------------------------------------------------------
    # Upstream access
    # ------------------------------------------------------------------

    async def get_json(self, url: str, params: Dict[str, Any]) -> Any:
        """GET `url` through retry -> breaker -> HTTP and return the decoded JSON."""
        return await self.retry.run(lambda: self.breaker.call(lambda: self._http_get(url, params)))

    async def _http_get(self, url: str, params: Dict[str, Any]) -> Any:
        try:
            r = await self.client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{self.name} request failed: {exc!r}") from exc

        if is_city_not_found(r):
            raise UpstreamNotFoundError(r.json().get("message", "city not found"))
        if r.status_code != 200:
            raise UpstreamError(
                f"{self.name} returned {r.status_code}: {r.text[:200]}",
                status_code=r.status_code if r.status_code >= 500 else None,
            )
        try:
            return r.json()
        except ValueError as exc:
            raise UpstreamError(f"{self.name} returned invalid JSON") from exc

    async def gather(self, calls: Dict[str, Callable[[], Awaitable[T]]]) -> List[FetchOutcome[T]]:
        """
        Run labelled upstream calls concurrently.

        Returns one FetchOutcome per call, in the order of `calls` (not in
        completion order). A failing call never fails the batch.
        """
        async def run(label: str, call: Callable[[], Awaitable[T]]) -> FetchOutcome[T]:
            try:
                return FetchOutcome(label=label, value=await call())
            except WeatherError as exc:
                logger.warning("%s: %s failed: %s", self.name, label, exc)
                return FetchOutcome(label=label, error=exc)

        return list(await asyncio.gather(*(run(label, call) for label, call in calls.items())))

    # ------------------------------------------------------------------
    # Cache-aside pipeline
    # ------------------------------------------------------------------

    async def fetch(
        self,
        kind: str,
        target: str,
        produce: Callable[[], Awaitable[T]],
        default: Optional[Callable[[], T]] = None,
        *,
        load: Callable[[Any], T] = _identity,
        dump: Callable[[T], Any] = _identity,
    ) -> T:
        """
        Produce a value for (kind, target), hiding upstream instability.

        1. cache hit -> return it (no network)
        2. miss -> `produce()` (upstream calls + transform), cache, return
        3. upstream says "city not found" -> NotFoundError, no fallback
        4. any other failure -> stale cache copy -> `default()`
           (re-raised when no default builder is given)
        """
        key = self.cache_key(kind, target)

        cached = await self._cache_get(key)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", target, key)
            metrics.cache_hits_total.labels(namespace=self.namespace).inc()
            return load(cached)

        logger.info("Cache miss for %s (%s)", target, key)
        metrics.cache_misses_total.labels(namespace=self.namespace).inc()

        try:
            value = await produce()
        except UpstreamNotFoundError as exc:
            logger.error("City not found: %s", target)
            raise NotFoundError(f"City not found: {target}") from exc
        except NotFoundError:
            logger.error("City not found: %s", target)
            raise
        except WeatherError as exc:
            logger.error("Failed to fetch %s for %s: %s", kind, target, exc)
            return await self._fallback(key, target, exc, default, load)

        payload = dump(value)
        await self._cache_set(key, payload, self.cache_ttl_seconds)
        await self._cache_set(key + STALE_SUFFIX, payload, self.stale_ttl_seconds)
        return value

    async def _fallback(
        self,
        key: str,
        target: str,
        error: WeatherError,
        default: Optional[Callable[[], T]],
        load: Callable[[Any], T],
    ) -> T:
        for candidate in (key, key + STALE_SUFFIX):
            stale = await self._cache_get(candidate)
            if stale is not None:
                logger.warning("Returning stale cache for %s due to upstream failure.", target)
                metrics.degraded_responses_total.labels(namespace=self.namespace, fallback="stale").inc()
                return load(stale)

        if default is None:
            raise error

        logger.warning(
            "Returning static default for %s due to upstream and cache failure.", target
        )
        metrics.degraded_responses_total.labels(namespace=self.namespace, fallback="default").inc()
        return default()

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except Exception as exc:  # noqa: BLE001 - cache is advisory, treat as miss
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def _cache_set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds)
        except Exception as exc:  # noqa: BLE001 - a failed write must not fail the request
            logger.warning("Cache write failed for %s: %s", key, exc)
