"""Per-dependency circuit breakers."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from .errors import CircuitOpenFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    open_timeout: float = 60.0
    window: float = 10.0
    half_open_max_calls: int = 1


def _count_everything(exc: BaseException) -> bool:
    return True


class CircuitBreaker:
    """CLOSED -> OPEN after ``failure_threshold`` failures inside ``window``
    seconds; OPEN -> HALF_OPEN once ``open_timeout`` has passed; HALF_OPEN ->
    CLOSED after ``success_threshold`` consecutive successes, or back to OPEN
    on the first failure.

    ``is_failure`` decides which exceptions count against the dependency.
    Exceptions it rejects still propagate but are recorded as successes.
    """

    def __init__(
        self,
        key: str,
        config: Optional[BreakerConfig] = None,
        is_failure: Callable[[BaseException], bool] = _count_everything,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.key = key
        self.config = config or BreakerConfig()
        self._is_failure = is_failure
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures: Deque[float] = deque()
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._next_attempt: Optional[float] = None

        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._rejected_calls = 0
        self._last_failure: Optional[float] = None
        self._last_success: Optional[float] = None
        self._last_transition: float = clock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        probe = self._admit()
        try:
            result = await fn()
        except Exception as exc:
            if self._is_failure(exc):
                self._on_failure(probe)
            else:
                self._on_success(probe)
            raise
        except BaseException:
            # Cancelled: free the half-open slot without recording an outcome.
            self._release(probe)
            raise
        self._on_success(probe)
        return result

    def check(self) -> None:
        """Raise :class:`CircuitOpenFailure` while the circuit is open and cooling down."""
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and self._next_attempt is not None
                and self._clock() < self._next_attempt
            ):
                self._total_calls += 1
                self._rejected_calls += 1
                raise CircuitOpenFailure(self.key, self._next_attempt)

    def _admit(self) -> bool:
        with self._lock:
            now = self._clock()
            self._total_calls += 1
            if self._state is CircuitState.OPEN:
                if self._next_attempt is not None and now < self._next_attempt:
                    self._rejected_calls += 1
                    raise CircuitOpenFailure(self.key, self._next_attempt)
                self._transition(CircuitState.HALF_OPEN, now)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_calls:
                    self._rejected_calls += 1
                    # Slots taken; the next attempt time depends on their outcome.
                    raise CircuitOpenFailure(self.key, None)
                self._half_open_in_flight += 1
                return True
            return False

    def _release(self, probe: bool) -> None:
        if not probe:
            return
        with self._lock:
            self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)

    def _on_success(self, probe: bool) -> None:
        with self._lock:
            now = self._clock()
            self._total_successes += 1
            self._last_success = now
            if probe:
                self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED, now)

    def _on_failure(self, probe: bool) -> None:
        with self._lock:
            now = self._clock()
            self._total_failures += 1
            self._last_failure = now
            if probe:
                self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, now)
                return
            if self._state is CircuitState.OPEN:
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN, now)

    def _prune(self, now: float) -> None:
        horizon = now - self.config.window
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

    def _transition(self, state: CircuitState, now: float) -> None:
        previous = self._state
        self._state = state
        self._last_transition = now
        self._half_open_successes = 0
        if state is CircuitState.OPEN:
            self._next_attempt = now + self.config.open_timeout
            logger.warning(
                "Circuit %s: %s -> OPEN (retry after %.1fs)",
                self.key,
                previous.value.upper(),
                self.config.open_timeout,
            )
        elif state is CircuitState.CLOSED:
            self._failures.clear()
            self._next_attempt = None
            self._half_open_in_flight = 0
            logger.info("Circuit %s: %s -> CLOSED", self.key, previous.value.upper())
        else:
            self._half_open_in_flight = 0
            logger.info("Circuit %s: OPEN -> HALF_OPEN", self.key)

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED, self._clock())

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._prune(self._clock())
            return {
                "key": self.key,
                "state": self._state.value,
                "failures_in_window": len(self._failures),
                "half_open_successes": self._half_open_successes,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "rejected_calls": self._rejected_calls,
                "last_failure": self._last_failure,
                "last_success": self._last_success,
                "last_transition": self._last_transition,
                "next_attempt": self._next_attempt,
            }


class CircuitBreakerManager:
    """Owns one breaker per dependency key, created on first use."""

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        is_failure: Callable[[BaseException], bool] = _count_everything,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or BreakerConfig()
        self._is_failure = is_failure
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(key, self.config, self._is_failure, self._clock)
                self._breakers[key] = breaker
            return breaker

    def all_stats(self) -> List[Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.stats() for breaker in breakers]

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def health_summary(self) -> Dict[str, Any]:
        stats = self.all_stats()
        open_keys = [item["key"] for item in stats if item["state"] == CircuitState.OPEN.value]
        half_open = [item["key"] for item in stats if item["state"] == CircuitState.HALF_OPEN.value]
        return {
            "healthy": not open_keys,
            "total": len(stats),
            "open": open_keys,
            "half_open": half_open,
        }
