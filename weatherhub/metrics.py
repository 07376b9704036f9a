"""
Prometheus metrics for the weather core.

- cache hits / misses per cache namespace
- degraded responses (stale cache or static default)
- retry attempts per upstream
- circuit breaker state per upstream
"""

from prometheus_client import Counter, Gauge

cache_hits_total = Counter(
    "weather_cache_hits_total",
    "Total number of cache hits for weather lookups",
    ["namespace"],
)

cache_misses_total = Counter(
    "weather_cache_misses_total",
    "Total number of cache misses for weather lookups",
    ["namespace"],
)

degraded_responses_total = Counter(
    "weather_degraded_responses_total",
    "Responses served from stale cache or static defaults after upstream failure",
    ["namespace", "fallback"],  # fallback: stale, default
)

upstream_retries_total = Counter(
    "weather_upstream_retries_total",
    "Failed upstream attempts observed by the retry policy",
    ["upstream"],
)

circuit_breaker_state = Gauge(
    "weather_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["upstream"],
)
