from __future__ import annotations

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, TypeVar

from relaybot.errors import BreakerOpenError
from relaybot.logging_config import logger

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Fail-fast guard around one dependency.

    CLOSED counts consecutive failures and opens at `failure_threshold`.
    OPEN rejects every call with `BreakerOpenError` until `reset_timeout`
    has passed since the last failure, then lets exactly one trial call
    through (HALF_OPEN). The trial's result closes or re-opens the breaker.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._state is BreakerState.OPEN and self._cooldown_left() <= 0:
            return BreakerState.HALF_OPEN
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _cooldown_left(self) -> float:
        if self._last_failure_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self._clock() - self._last_failure_at))

    def _admit(self) -> None:
        state = self.state
        if state is BreakerState.CLOSED:
            return
        if state is BreakerState.HALF_OPEN and not self._trial_in_flight:
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("Circuit breaker '%s' half-open; allowing one trial call", self.name)
            return
        raise BreakerOpenError(self.name, self._cooldown_left())

    def record_success(self) -> None:
        if self._state is not BreakerState.CLOSED:
            logger.info("Circuit breaker '%s' closed", self.name)
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_at = self._clock()
        if self._state is BreakerState.HALF_OPEN:
            self._state = BreakerState.OPEN
            self._trial_in_flight = False
            logger.warning("Circuit breaker '%s' trial call failed; re-opened", self.name)
        elif self._state is BreakerState.CLOSED and self._failures >= self.failure_threshold:
            self._state = BreakerState.OPEN
            logger.warning(
                "Circuit breaker '%s' opened after %d consecutive failures",
                self.name,
                self._failures,
            )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._admit()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # Cancelled trial: give the slot back without judging the dependency.
            self._trial_in_flight = False
            raise
        self.record_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self._failures,
            "retry_after": round(self._cooldown_left(), 3)
            if self._state is BreakerState.OPEN
            else 0.0,
        }


__all__ = ["BreakerState", "CircuitBreaker"]
