"""Half-open circuit breaker guarding snapshot collection."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

logger = logging.getLogger("fleetguard.engine")


class CircuitOpen(Exception):
    """Raised when the breaker rejects a call without running it."""


class CircuitBreaker:
    """Stops hammering a failing snapshot source.

    States:
      CLOSED    -- calls pass through
      OPEN      -- ``failure_threshold`` consecutive failures; calls rejected
      HALF_OPEN -- after ``reset_timeout`` one trial call decides the next state

    Args:
        name: Source name (for logging).
        failure_threshold: Consecutive failures before opening.
        reset_timeout: Seconds before OPEN -> HALF_OPEN.
        clock: Monotonic clock, replaceable in tests.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._state = self.CLOSED
        self._opened_at: float | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run *fn* unless the breaker is open; raises CircuitOpen otherwise."""
        if self._state == self.OPEN:
            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed < self._reset_timeout:
                raise CircuitOpen(
                    f"Circuit breaker '{self._name}' is OPEN "
                    f"(retry in {self._reset_timeout - elapsed:.0f}s)"
                )
            self._state = self.HALF_OPEN
            logger.info("Circuit breaker '%s': OPEN -> HALF_OPEN", self._name)

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_failure(self) -> None:
        self._failures += 1
        if self._state == self.HALF_OPEN or self._failures >= self._failure_threshold:
            self._state = self.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker '%s': -> OPEN after %d failure(s)", self._name, self._failures
            )

    def _on_success(self) -> None:
        if self._state == self.HALF_OPEN:
            logger.info("Circuit breaker '%s': HALF_OPEN -> CLOSED", self._name)
        self._failures = 0
        self._state = self.CLOSED
