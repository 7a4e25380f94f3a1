"""
Resilient execution: retry with exponential backoff plus per-dependency
circuit breakers.

Retry:
- Only transient errors (TransientDependencyError, ConnectionError,
  TimeoutError) are retried; anything else propagates on the first attempt.
- delay(attempt) = base_delay_ms * 2 ** (attempt - 1), slept between attempts.
- When attempts run out the last error is re-raised wrapped in
  RetriesExhaustedError.

Circuit breaker:
- CLOSED: calls pass through; consecutive failures are counted and the
  breaker opens at the failure threshold.
- OPEN: calls fail fast with CircuitOpenError until the cooldown elapses.
- HALF_OPEN: exactly one trial call is let through; success closes the
  breaker and resets counters, failure re-opens it with a fresh cooldown.

Breakers are process-wide, one per dependency name, created on first use.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, TypeVar

from config.settings import BREAKER_COOLDOWN_SECONDS, BREAKER_FAILURE_THRESHOLD
from domain.errors import CircuitOpenError, RetriesExhaustedError, TransientDependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# Retry
# ============================================================================

@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms cannot be negative")

    def delay_seconds(self, attempt: int) -> float:
        """Backoff to sleep after failed attempt number `attempt` (1-based)."""
        return self.base_delay_ms * (2 ** (attempt - 1)) / 1000.0


def is_transient(error: BaseException) -> bool:
    return isinstance(error, (TransientDependencyError, ConnectionError, TimeoutError))


def execute_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    classify: Callable[[BaseException], bool] = is_transient,
) -> T:
    """
    Run `operation`, retrying transient failures according to `policy`.

    Raises:
        RetriesExhaustedError: every attempt failed with a transient error
        Exception: the first non-transient error, unchanged
    """

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if not classify(e):
                raise
            if attempt == policy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise RetriesExhaustedError(attempt, e) from e
            delay = policy.delay_seconds(attempt)
            logger.warning(
                f"{description} attempt {attempt}/{policy.max_attempts} failed: {e}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


# ============================================================================
# Circuit breaker
# ============================================================================

class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Failure-isolation state machine guarding one named dependency."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        cooldown_seconds: float = BREAKER_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self._state = BreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_time: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._state

    def execute(self, operation: Callable[[], T]) -> T:
        """
        Run `operation` through the breaker.

        Raises:
            CircuitOpenError: breaker is OPEN (or a HALF_OPEN trial is already running);
                `operation` is not called
        """

        with self._lock:
            self._before_call()

        try:
            result = operation()
        except Exception:
            with self._lock:
                self._on_failure()
            raise

        with self._lock:
            self._on_success()
        return result

    def _before_call(self) -> None:
        if self._state is BreakerState.OPEN:
            now = self._clock()
            if self.next_attempt_time is None:
                raise RuntimeError(f"Circuit '{self.name}' is OPEN without a next attempt time")
            if now < self.next_attempt_time:
                raise CircuitOpenError(self.name, self.next_attempt_time - now)
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"Circuit '{self.name}' HALF_OPEN: allowing one trial call")

        if self._state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, 0.0)
            self._trial_in_flight = True

    def _on_failure(self) -> None:
        if self._state is BreakerState.HALF_OPEN:
            self._trip("trial call failed")
            return

        self.failure_count += 1
        if self.failure_count >= self.failure_threshold:
            self._trip(f"{self.failure_count} consecutive failures")

    def _on_success(self) -> None:
        if self._state is BreakerState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' CLOSED after successful trial call")
            self._state = BreakerState.CLOSED
            self.failure_count = 0
            self.success_count = 0
            self.next_attempt_time = None
            self._trial_in_flight = False
            return

        self.failure_count = 0
        self.success_count += 1

    def _trip(self, reason: str) -> None:
        self._state = BreakerState.OPEN
        self.next_attempt_time = self._clock() + self.cooldown_seconds
        self._trial_in_flight = False
        self.success_count = 0
        logger.warning(
            f"Circuit '{self.name}' OPEN ({reason}); cooling down {self.cooldown_seconds:.0f}s"
        )

    def reset(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED
            self.failure_count = 0
            self.success_count = 0
            self.next_attempt_time = None
            self._trial_in_flight = False


class CircuitBreakerRegistry:
    """Keyed registry of breakers; one breaker per dependency name."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def execute(self, name: str, operation: Callable[[], T]) -> T:
        return self.get(name).execute(operation)

    def states(self) -> Dict[str, str]:
        with self._lock:
            return {name: breaker.state.value for name, breaker in self._breakers.items()}

    def clear(self) -> None:
        with self._lock:
            self._breakers.clear()


_registry = CircuitBreakerRegistry()


def get_breaker_registry() -> CircuitBreakerRegistry:
    return _registry


def reset_circuit_breakers() -> None:
    """Test hook: forget every process-wide breaker."""
    _registry.clear()


__all__ = [
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "RetryPolicy",
    "execute_with_retry",
    "get_breaker_registry",
    "is_transient",
    "reset_circuit_breakers",
]
