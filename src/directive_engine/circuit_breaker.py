"""Per-provider circuit breaker.

States:
    CLOSED     calls flow; consecutive failures are counted
    OPEN       calls are skipped until reset_timeout has elapsed
    HALF_OPEN  exactly one trial call is let through; success closes the
               circuit, failure reopens it

Each breaker guards its counters and state with its own lock, so readers
never see a state paired with a stale failure timestamp.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class CircuitSnapshot:
    """Consistent point-in-time view of a breaker."""

    state: CircuitState
    failures: int
    last_failure_time: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "last_failure_time": self.last_failure_time,
        }


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Args:
        name: Owner name used in log messages
        failure_threshold: Consecutive failures that open the circuit
        reset_timeout_s: Cooldown before a half-open trial is allowed
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout_s = reset_timeout_s
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time: Optional[float] = None
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        """
        Decide whether a call may be attempted now.

        Moves OPEN to HALF_OPEN once the cooldown has elapsed and hands out a
        single trial permit while half-open.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_time or 0.0)
                if elapsed < self.reset_timeout_s:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info(f"Circuit for {self.name} half-open after {elapsed:.1f}s cooldown")
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info(f"Circuit for {self.name} closed")
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()
            self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit for {self.name} reopened after failed trial")
            elif self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    f"Circuit for {self.name} opened after {self._failures} consecutive failures"
                )

    def release(self) -> None:
        """Return an unused half-open trial permit (the call was abandoned, not failed)."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._last_failure_time = None
            self._trial_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(self._state, self._failures, self._last_failure_time)

    @property
    def state(self) -> CircuitState:
        return self.snapshot().state
