"""
Circuit breaker pattern implementation for resilient service calls.
"""

import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional, Callable, Awaitable, TypeVar, TYPE_CHECKING

from shared.errors import CircuitOpenError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Read-only view of a breaker at one instant."""

    name: str
    state: CircuitBreakerState
    failure_count: int
    last_failure_time: float
    failure_threshold: int
    open_timeout: float

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["failures"] = self.failure_count
        return data


class CircuitBreaker:
    """Three-state circuit breaker.

    CLOSED invokes the operation and counts consecutive failures; reaching
    ``failure_threshold`` opens the circuit. OPEN rejects calls with
    ``CircuitOpenError`` until ``open_timeout`` seconds have passed since the
    last failure, then lets a single trial through in HALF_OPEN; other callers
    are rejected while the trial runs. A successful trial closes the circuit,
    a failed one re-opens it.

    All state changes happen between awaits on a single event loop, so no
    lock is taken.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 open_timeout: float = 60.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic,
                 metrics: Optional["MetricsCollector"] = None):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if open_timeout < 0:
            raise ValueError("open_timeout must not be negative")

        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self.name = name
        self.logger = get_logger(f"books.circuit_breaker.{name}")
        self.metrics = metrics
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._trial_in_flight = False
        self._publish_state()

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _set_state(self, state: CircuitBreakerState):
        if state is self._state:
            return
        self.logger.info(
            "Circuit breaker state change",
            circuit=self.name,
            from_state=self._state.value,
            to_state=state.value,
            failure_count=self._failure_count,
        )
        self._state = state
        self._publish_state()

    def _publish_state(self):
        if self.metrics is not None:
            self.metrics.record_circuit_state(self.name, self._state.value)

    def _remaining_open_time(self) -> float:
        return self.open_timeout - (self._clock() - self._last_failure_time)

    def _before_call(self) -> bool:
        """Reject or admit a call; returns True when the call is the half-open trial."""
        if self._state == CircuitBreakerState.OPEN:
            remaining = self._remaining_open_time()
            if remaining > 0:
                raise CircuitOpenError(self.name, retry_after=remaining)
            self._set_state(CircuitBreakerState.HALF_OPEN)

        if self._state == CircuitBreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, details={"reason": "half-open trial in progress"})
            self._trial_in_flight = True
            return True
        return False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under breaker protection."""
        is_trial = self._before_call()

        try:
            result = await operation()
        except Exception:
            self._record_failure()
            raise
        finally:
            # Cancellation must not leave the breaker stuck in HALF_OPEN.
            if is_trial:
                self._trial_in_flight = False

        self._record_success()
        return result

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Execute function with circuit breaker protection."""
        return await self.execute(lambda: func(*args, **kwargs))

    def _record_success(self):
        self._failure_count = 0
        if self._state == CircuitBreakerState.HALF_OPEN:
            self._set_state(CircuitBreakerState.CLOSED)
            self.logger.info("Circuit breaker reset to CLOSED after successful trial", circuit=self.name)

    def _record_failure(self):
        """Record a failure and update state."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._set_state(CircuitBreakerState.OPEN)
            self.logger.warning("Circuit breaker trial failed, reopening", circuit=self.name)
        elif self._failure_count >= self.failure_threshold:
            self._set_state(CircuitBreakerState.OPEN)
            self.logger.warning(
                "Circuit breaker opened due to failures",
                circuit=self.name,
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> CircuitBreakerSnapshot:
        """Get current circuit breaker state."""
        return CircuitBreakerSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            failure_threshold=self.failure_threshold,
            open_timeout=self.open_timeout,
        )

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN


def external_provider_breaker(name: str = "google_books", **kwargs) -> CircuitBreaker:
    """Breaker tuned for the external metadata provider."""
    kwargs.setdefault("failure_threshold", 3)
    kwargs.setdefault("open_timeout", 60.0)
    return CircuitBreaker(name=name, **kwargs)


def persistence_breaker(name: str = "persistence", **kwargs) -> CircuitBreaker:
    """Breaker tuned for the persistence collaborator."""
    kwargs.setdefault("failure_threshold", 5)
    kwargs.setdefault("open_timeout", 30.0)
    return CircuitBreaker(name=name, **kwargs)


class CircuitBreakerManager:
    """Registry of the breakers owned by one composition root."""

    def __init__(self):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.logger = get_logger("books.circuit_breaker_manager")

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        """Track an existing breaker under its name."""
        if breaker.name in self.circuit_breakers:
            raise ValueError(f"Circuit breaker '{breaker.name}' already registered")
        self.circuit_breakers[breaker.name] = breaker
        self.logger.info("Registered circuit breaker", name=breaker.name)
        return breaker

    def get_circuit_breaker(self, name: str) -> Optional[CircuitBreaker]:
        return self.circuit_breakers.get(name)

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all circuit breakers."""
        return {
            name: cb.get_state().as_dict()
            for name, cb in self.circuit_breakers.items()
        }
