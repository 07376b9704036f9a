"""
Circuit breaker and retry policy for upstream HTTP calls.

The two compose with retry as the outer layer and the breaker as the inner
one:

    await retry.run(lambda: breaker.call(lambda: client.get(...)))

so a single logical request gets several attempts, but once the breaker is
open those attempts fail fast instead of each waiting for the call timeout.

Breaker states:
- CLOSED: calls pass through; outcomes feed a rolling failure-rate window
- OPEN: calls are rejected with CircuitOpenError until the cool-down elapses
- HALF_OPEN: one trial call decides between CLOSED and OPEN again
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Deque, Optional, Tuple, Type, TypeVar

from . import metrics
from .errors import CircuitOpenError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class BreakerConfig:
    """Configuration for circuit breaker behavior."""

    # A single call is aborted (and counted as a failure) after this long
    timeout_seconds: float = 5.0

    # Open when the failure rate in the window is strictly above this
    error_threshold_percent: float = 50.0

    # Seconds to stay open before allowing a trial call
    reset_timeout_seconds: float = 10.0

    # Outcomes older than this no longer count toward the failure rate
    rolling_window_seconds: float = 10.0

    # Minimum number of outcomes in the window before the breaker may open
    volume_threshold: int = 0


class CircuitBreaker:
    """
    Circuit breaker guarding a single upstream dependency.

    Meant to be created once per upstream and shared by every caller, since
    its job is to observe the aggregate failure rate. Not thread-safe; all
    callers are expected to run on the same event loop.
    """

    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        *,
        ignored_exceptions: Tuple[Type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._window: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

        self._total_calls = 0
        self._failed_calls = 0
        self._rejected_calls = 0
        self._timeouts = 0
        metrics.circuit_breaker_state.labels(upstream=name).set(0)

    @property
    def state(self) -> CircuitState:
        """Current state (may move from OPEN to HALF_OPEN on access)."""
        self._check_cool_down()
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def failure_rate(self) -> float:
        """Failure percentage over the rolling window (0 when empty)."""
        self._prune()
        if not self._window:
            return 0.0
        failures = sum(1 for _, failed in self._window if failed)
        return failures * 100.0 / len(self._window)

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` through the breaker.

        Raises:
            CircuitOpenError: breaker open, or a half-open trial is in flight
            UpstreamTimeoutError: the call exceeded `timeout_seconds`
            Exception: whatever the operation raised (recorded as a failure
                unless it is one of `ignored_exceptions`)
        """
        self._total_calls += 1
        self._check_cool_down()

        is_trial = False
        if self._state == CircuitState.OPEN or (
            self._state == CircuitState.HALF_OPEN and self._trial_in_flight
        ):
            self._rejected_calls += 1
            raise CircuitOpenError(self.name, self._retry_after())
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = True
            is_trial = True

        try:
            try:
                result = await asyncio.wait_for(operation(), timeout=self.config.timeout_seconds)
            except asyncio.TimeoutError as exc:
                self._timeouts += 1
                raise UpstreamTimeoutError(
                    f"Call through '{self.name}' timed out after {self.config.timeout_seconds}s"
                ) from exc
        except self.ignored_exceptions:
            self._record_success()
            raise
        except Exception as exc:
            self._record_failure(exc)
            raise
        else:
            self._record_success()
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    def reset(self) -> None:
        """Manually close the breaker and forget past outcomes."""
        self._transition_to(CircuitState.CLOSED)
        self._window.clear()
        self._opened_at = None

    def diagnostics(self) -> dict:
        """Diagnostic info for the health endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_rate": round(self.failure_rate(), 1),
            "config": {
                "timeout_seconds": self.config.timeout_seconds,
                "error_threshold_percent": self.config.error_threshold_percent,
                "reset_timeout_seconds": self.config.reset_timeout_seconds,
            },
            "stats": {
                "total_calls": self._total_calls,
                "failed_calls": self._failed_calls,
                "rejected_calls": self._rejected_calls,
                "timeouts": self._timeouts,
            },
        }

    # Internals ----------------------------------------------------------

    def _prune(self) -> None:
        horizon = self._clock() - self.config.rolling_window_seconds
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _check_cool_down(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.config.reset_timeout_seconds:
            self._transition_to(CircuitState.HALF_OPEN)

    def _retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.reset_timeout_seconds - elapsed)

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._window.clear()
            self._transition_to(CircuitState.CLOSED)
            return
        self._window.append((self._clock(), False))
        self._prune()

    def _record_failure(self, exc: BaseException) -> None:
        self._failed_calls += 1
        if self._state == CircuitState.HALF_OPEN:
            logger.debug("Trial call through %s failed: %s", self.name, exc)
            self._open()
            return
        if self._state == CircuitState.OPEN:
            # A call admitted before the breaker opened finished late
            return

        self._window.append((self._clock(), True))
        rate = self.failure_rate()
        if len(self._window) >= self.config.volume_threshold and rate > self.config.error_threshold_percent:
            logger.debug(
                "Failure rate %.1f%% over threshold %.1f%% for %s",
                rate, self.config.error_threshold_percent, self.name,
            )
            self._open()

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        metrics.circuit_breaker_state.labels(upstream=self.name).set(_STATE_GAUGE[new_state])
        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit %s open for %.1fs", self.name, self.config.reset_timeout_seconds
            )
        else:
            logger.info("Circuit %s %s", self.name, new_state.value.replace("_", "-"))


class RetryPolicy:
    """
    Bounded retries with exponential backoff.

    With the defaults an operation runs at most 4 times (1 + 3 retries),
    waiting 0.5s, 1s and 2s between attempts.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.5,
        factor: float = 2.0,
        *,
        giveup_on: Tuple[Type[BaseException], ...] = (),
        on_failed_attempt: Optional[Callable[[int, BaseException, float], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "upstream",
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.factor = factor
        self.giveup_on = giveup_on
        self.name = name
        self._on_failed_attempt = on_failed_attempt or self._log_failed_attempt
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        delay = self.initial_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.giveup_on:
                raise
            except Exception as exc:
                self._on_failed_attempt(attempt, exc, delay)
                if attempt > self.max_retries:
                    raise
            await self._sleep(delay)
            delay *= self.factor

    def _log_failed_attempt(self, attempt: int, exc: BaseException, delay: float) -> None:
        metrics.upstream_retries_total.labels(upstream=self.name).inc()
        retries_left = self.max_retries - attempt + 1
        if retries_left > 0:
            logger.warning(
                "Retry attempt #%d for %s after failure: %s (next in %.2fs, %d left)",
                attempt, self.name, exc, delay, retries_left,
            )
        else:
            logger.warning("Attempt #%d for %s failed, giving up: %s", attempt, self.name, exc)
