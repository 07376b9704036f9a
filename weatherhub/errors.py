"""
Error taxonomy.

Every error raised by the weather core is a WeatherError carrying an
HTTP-equivalent status code, so the route layer can translate it without
knowing the details:

- NotFoundError: upstream confirmed the city does not exist (404).
  The only failure that reaches callers of the weather provider.
- UpstreamError and subclasses: transient upstream failures (timeouts,
  5xx, network errors, open breaker). Absorbed by the fetch pipeline.
"""

from __future__ import annotations

from typing import Optional


class WeatherError(RuntimeError):
    """Raised for user-facing weather lookup failures."""
    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(WeatherError):
    """The requested entity does not exist upstream or locally."""
    status_code = 404


class ConflictError(WeatherError):
    status_code = 409


class UnsupportedOperationError(WeatherError):
    """The selected provider cannot serve this kind of request."""
    status_code = 501


class UpstreamError(WeatherError):
    """Upstream unavailable: non-2xx response, network error, bad payload."""
    status_code = 502


class UpstreamNotFoundError(UpstreamError):
    """HTTP 404 whose body says "city not found"."""
    status_code = 404


class UpstreamTimeoutError(UpstreamError):
    status_code = 504


class CircuitOpenError(UpstreamError):
    """Raised by an open circuit breaker without calling the upstream."""
    status_code = 503

    def __init__(self, name: str, retry_after: float):
        super().__init__(f"Circuit '{name}' is open; retry in {retry_after:.1f}s")
        self.name = name
        self.retry_after = retry_after
