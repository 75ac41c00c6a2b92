"""
Circuit Breaker Pattern Implementation.

Provides per-source fault isolation for upstream API calls through
state-based failure handling with automatic recovery.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from fpl_gateway.utils.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

# Transitions kept for statistics
MAX_STATE_CHANGES = 10


class CircuitState(str, Enum):
    """Circuit breaker state machine states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests due to failures
    HALF_OPEN = "half_open"  # Testing recovery with a single probe


StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    Circuit breaker for one upstream source.

    Stops calling a source after consecutive failures and lets a single
    probe through once the cooldown has elapsed.

    State Transitions:
        CLOSED → OPEN: failure_count reaches failure_threshold
        OPEN → HALF_OPEN: now >= next_attempt_at
        HALF_OPEN → CLOSED: probe succeeds (failure_count reset to 0)
        HALF_OPEN → OPEN: probe fails (next_attempt_at = now + recovery_timeout)

    In CLOSED, each success decrements a nonzero failure_count by one, so
    intermittent errors decay instead of accumulating forever.

    Attributes:
        name: Source this breaker guards
        failure_threshold: Failures before opening circuit
        recovery_timeout: Seconds to wait before a half-open probe
        state: Current circuit state

    Example:
        >>> breaker = CircuitBreaker("rapidapi_fpl", failure_threshold=5)
        >>> try:
        ...     data = await breaker.call_async(lambda: client.get("/api/fixtures/"))
        ... except CircuitOpenError:
        ...     print("Source unavailable - circuit is open")
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Source name
            failure_threshold: Failures before opening (default: 5)
            recovery_timeout: Seconds before a recovery probe (default: 60)
            clock: Epoch-seconds clock (defaults to time.time)
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock or time.time

        # State management
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._next_attempt_at: Optional[float] = None
        self._probe_in_flight = False

        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []

        # Statistics
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejected = 0
        self._state_changes: deque = deque(maxlen=MAX_STATE_CHANGES)

        logger.info(
            f"Circuit breaker initialized: {name}",
            extra={
                "failure_threshold": failure_threshold,
                "recovery_timeout": recovery_timeout,
            },
        )

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as listener(name, old_state, new_state)."""
        self._listeners.append(listener)

    def _notify(self, changes: list) -> None:
        for old_state, new_state in changes:
            for listener in self._listeners:
                try:
                    listener(self.name, old_state, new_state)
                except Exception as e:
                    logger.error(f"Circuit breaker {self.name} listener failed: {e}")

    def _refresh_state(self, now: float, changes: list) -> None:
        """Move OPEN → HALF_OPEN once the cooldown has elapsed. Caller holds the lock."""
        if (
            self._state == CircuitState.OPEN
            and self._next_attempt_at is not None
            and now >= self._next_attempt_at
        ):
            self._transition(CircuitState.HALF_OPEN, changes)
            self._probe_in_flight = False
            logger.info(f"Circuit breaker {self.name}: OPEN → HALF_OPEN (attempting recovery)")

    def _transition(self, new_state: CircuitState, changes: list) -> None:
        old_state = self._state
        self._state = new_state
        self._state_changes.append(
            {
                "timestamp": _iso(self._clock()),
                "from_state": old_state.value,
                "to_state": new_state.value,
                "failure_count": self._failure_count,
                "total_failures": self._total_failures,
            }
        )
        changes.append((old_state, new_state))

    def _open(self, now: float, changes: list) -> None:
        old_state = self._state
        self._next_attempt_at = now + self.recovery_timeout
        self._probe_in_flight = False
        self._transition(CircuitState.OPEN, changes)
        logger.warning(
            f"Circuit breaker {self.name}: {old_state.value} → OPEN (threshold exceeded)",
            extra={
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            },
        )

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        changes = []
        with self._lock:
            self._refresh_state(self._clock(), changes)
            state = self._state
        self._notify(changes)
        return state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def next_attempt_at(self) -> Optional[float]:
        """Epoch seconds when an open circuit allows its next probe."""
        return self._next_attempt_at if self._state == CircuitState.OPEN else None

    def allow_request(self) -> bool:
        """
        Check whether a call may proceed, reserving the probe slot in HALF_OPEN.

        Returns:
            False while OPEN, or while a half-open probe is already in flight
        """
        changes = []
        with self._lock:
            self._refresh_state(self._clock(), changes)

            if self._state == CircuitState.OPEN:
                allowed = False
            elif self._state == CircuitState.HALF_OPEN:
                allowed = not self._probe_in_flight
                if allowed:
                    self._probe_in_flight = True
            else:
                allowed = True

            if allowed:
                self._total_calls += 1
            else:
                self._total_rejected += 1

        self._notify(changes)
        return allowed

    def is_available(self) -> bool:
        """True if a call would not be rejected outright (CLOSED or HALF_OPEN)."""
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        """Record successful operation."""
        changes = []
        with self._lock:
            self._total_successes += 1

            if self._state == CircuitState.HALF_OPEN:
                self._failure_count = 0
                self._next_attempt_at = None
                self._probe_in_flight = False
                self._transition(CircuitState.CLOSED, changes)
                logger.info(f"Circuit breaker {self.name}: HALF_OPEN → CLOSED (recovered)")
            elif self._failure_count > 0:
                self._failure_count -= 1

        self._notify(changes)

    def record_failure(self) -> None:
        """Record failed operation."""
        changes = []
        with self._lock:
            now = self._clock()
            self._total_failures += 1
            self._failure_count += 1
            self._last_failure_at = now

            logger.debug(
                f"Circuit breaker {self.name}: recorded failure "
                f"({self._failure_count}/{self.failure_threshold})"
            )

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in HALF_OPEN immediately reopens the circuit
                self._open(now, changes)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open(now, changes)

        self._notify(changes)

    def release(self) -> None:
        """Free the half-open probe slot for an outcome that neither proves nor disproves health."""
        with self._lock:
            self._probe_in_flight = False

    def rejection_error(self) -> CircuitOpenError:
        """Build the error raised for a rejected call."""
        return CircuitOpenError(
            f"Circuit breaker '{self.name}' is {self._state.value} - service unavailable",
            source=self.name,
            state=self._state.value,
            next_attempt_at=self._next_attempt_at,
        )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function through circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call (func is not invoked)
            Exception: Any exception raised by func
        """
        if not self.allow_request():
            raise self.rejection_error()

        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    async def call_async(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Await a coroutine produced by factory through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call (factory is not invoked)
            Exception: Any exception raised by the coroutine
        """
        if not self.allow_request():
            raise self.rejection_error()

        try:
            result = await factory()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        changes = []
        with self._lock:
            old_state = self._state
            self._failure_count = 0
            self._next_attempt_at = None
            self._last_failure_at = None
            self._probe_in_flight = False
            if old_state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED, changes)
        logger.info(f"Circuit breaker {self.name}: manual reset from {old_state.value} to CLOSED")
        self._notify(changes)

    def _get_recovery_time_remaining(self, now: float) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._next_attempt_at is None:
            return None
        return round(max(0.0, self._next_attempt_at - now), 1)

    def get_statistics(self) -> dict:
        """
        Get comprehensive circuit breaker statistics.

        Returns:
            Dictionary with state, counters, and metrics
        """
        changes = []
        with self._lock:
            now = self._clock()
            self._refresh_state(now, changes)

            finished = self._total_successes + self._total_failures
            failure_rate = (self._total_failures / finished * 100) if finished > 0 else 0

            stats = {
                "name": self.name,
                "state": self._state.value,
                "is_available": self._state != CircuitState.OPEN,
                "configuration": {
                    "failure_threshold": self.failure_threshold,
                    "recovery_timeout": self.recovery_timeout,
                },
                "counters": {
                    "total_calls": self._total_calls,
                    "total_successes": self._total_successes,
                    "total_failures": self._total_failures,
                    "total_rejected": self._total_rejected,
                    "failure_count": self._failure_count,
                },
                "metrics": {
                    "failure_rate_pct": round(failure_rate, 2),
                    "success_rate_pct": round(100 - failure_rate, 2),
                },
                "state_info": {
                    "current_state": self._state.value,
                    "last_failure_at": (
                        _iso(self._last_failure_at) if self._last_failure_at else None
                    ),
                    "next_attempt_at": (
                        _iso(self._next_attempt_at)
                        if self._state == CircuitState.OPEN and self._next_attempt_at
                        else None
                    ),
                    "recovery_in_seconds": self._get_recovery_time_remaining(now),
                    "probe_in_flight": self._probe_in_flight,
                },
                "state_changes": list(self._state_changes),
            }

        self._notify(changes)
        return stats

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"CircuitBreaker(name={self.name}, state={self._state.value}, "
            f"failures={self._failure_count}/{self.failure_threshold})"
        )


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
