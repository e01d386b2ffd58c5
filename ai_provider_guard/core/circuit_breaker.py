"""
Per-provider circuit breaker.

Stops sending requests to a provider that keeps failing, then lets a single
trial request through once the recovery timeout has elapsed.

States: CLOSED (normal) -> OPEN (failing) -> HALF_OPEN (one trial in flight)
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a breaker."""
    provider_id: str
    state: CircuitState
    consecutive_failures: int
    opened_at: Optional[float]
    failure_threshold: int
    recovery_timeout: float


class CircuitBreaker:
    """State machine guarding one provider.

    All state lives behind a single lock, so allow_request, record_success
    and record_failure are linearizable. The OPEN window is checked lazily on
    access; there are no background timers.
    """

    def __init__(
        self,
        provider_id: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if recovery_timeout < 0:
            raise ValueError("recovery_timeout cannot be negative")

        self.provider_id = provider_id
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state. An elapsed OPEN window stays OPEN until allow_request is called."""
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        """Return True if a request may be sent to this provider.

        After the recovery timeout, exactly one caller wins the HALF_OPEN
        trial; everyone else gets False until that trial is resolved.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._clock() < self._opened_at + self.recovery_timeout:
                    return False
                self._transition(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                return True

            # HALF_OPEN
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._opened_at = None
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed call (timeout, transport error or blocked output)."""
        with self._lock:
            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._open()
            elif (self._state == CircuitState.CLOSED
                    and self._consecutive_failures >= self.failure_threshold):
                self._open()

    def abandon_trial(self) -> None:
        """Release a granted HALF_OPEN trial without recording an outcome.

        Used when the caller cancels while holding the trial. No-op otherwise.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._trial_in_flight:
                self._trial_in_flight = False
                logger.info("[%s] HALF_OPEN trial abandoned by caller", self.provider_id)

    def snapshot(self) -> CircuitBreakerState:
        """Immutable copy of the current state."""
        with self._lock:
            return CircuitBreakerState(
                provider_id=self.provider_id,
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                opened_at=self._opened_at,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )

    def _open(self) -> None:
        # Caller holds the lock
        self._opened_at = self._clock()
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        # Caller holds the lock
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "[%s] circuit breaker %s -> %s (consecutive failures: %d)",
            self.provider_id, old_state.value, new_state.value, self._consecutive_failures,
        )
