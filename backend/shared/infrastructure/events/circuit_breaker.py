"""
Circuit breaker guarding the event transport.

When the transport keeps failing, publishing fails fast instead of stalling
every assignment on connection timeouts. Each EventPublisher owns one breaker.
"""

from __future__ import annotations

import random
import threading
import time
from enum import Enum

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Publishing skipped
    HALF_OPEN = "half_open"  # Probing whether the transport recovered


class EventCircuitBreaker:
    """
    Thread-safe breaker: CLOSED -> OPEN after `failure_threshold` consecutive
    failures, OPEN -> HALF_OPEN after `recovery_timeout` seconds, and back to
    CLOSED on the first successful probe.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 3,
        clock=time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float = 0.0
        self._half_open_calls = 0
        self._rejected_count = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def can_execute(self) -> bool:
        """Return True if a publish attempt may proceed."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self._recovery_timeout:
                    self._rejected_count += 1
                    return False
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info("Event circuit breaker transitioning to HALF_OPEN")

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self._half_open_max_calls:
                    self._rejected_count += 1
                    return False
                self._half_open_calls += 1

            return True

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.error(
                    "Event circuit breaker OPEN",
                    failure_count=self._failure_count,
                    threshold=self._failure_threshold,
                )

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Event circuit breaker recovered to CLOSED")
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "rejected_count": self._rejected_count,
            }


def calculate_retry_delay_with_jitter(attempt: int, base_delay: float = 0.1, max_delay: float = 2.0) -> float:
    """
    Exponential backoff with decorrelated jitter.

    attempt is 0-indexed; the result lies in [base_delay, base_delay * 2**attempt],
    capped at max_delay.
    """
    exp_delay = min(base_delay * (2 ** attempt), max_delay)
    return random.uniform(base_delay, max(base_delay, exp_delay))
