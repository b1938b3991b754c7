"""
Retry mechanism for resilient operations.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from shared.errors import AccessLayerException, ErrorKind, PersistenceError, RETRYABLE_KINDS
from shared.logging import get_logger


T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryObserver = Callable[[int, BaseException], Any]

JITTER_RATIO = 0.1
GATEWAY_STATUS_CODES = frozenset({502, 503, 504})


def default_retry_predicate(error: BaseException) -> bool:
    """Retry connectivity failures, timeouts, 5xx and 429.

    Client errors, auth failures, validation errors and open circuits are
    final. Exceptions outside the access layer taxonomy are treated as bugs
    and not retried, except transport failures raised directly by httpx or
    the runtime.
    """
    if isinstance(error, AccessLayerException):
        return error.kind in RETRYABLE_KINDS
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return False


def api_retry_predicate(error: BaseException) -> bool:
    """Default predicate plus explicit gateway errors (502-504)."""
    if getattr(error, "status_code", None) in GATEWAY_STATUS_CODES:
        return True
    return default_retry_predicate(error)


def persistence_retry_predicate(error: BaseException) -> bool:
    """Only connectivity-class failures are worth retrying against storage."""
    if isinstance(error, PersistenceError):
        return error.connectivity
    if isinstance(error, AccessLayerException):
        return error.kind == ErrorKind.NETWORK
    return isinstance(error, (httpx.ConnectError, ConnectionError))


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    retry_predicate: RetryPredicate = field(default=default_retry_predicate, compare=False)
    name: str = "default"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt``, without jitter."""
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)


API_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=8.0,
    backoff_factor=2.0,
    retry_predicate=api_retry_predicate,
    name="api",
)

PERSISTENCE_RETRY_POLICY = RetryPolicy(
    max_attempts=2,
    base_delay=2.0,
    max_delay=5.0,
    backoff_factor=1.5,
    retry_predicate=persistence_retry_predicate,
    name="persistence",
)


class RetryExecutor:
    """Re-invokes failing operations with exponential backoff and jitter."""

    def __init__(self,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 rng: Optional[random.Random] = None):
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.logger = get_logger("books.retry")

    def calculate_delay(self, attempt: int, policy: RetryPolicy) -> float:
        """Calculate delay between retry attempts."""
        delay = policy.backoff(attempt)
        return delay + self._rng.uniform(0.0, delay * JITTER_RATIO)

    async def execute(self,
                      operation: Callable[[], Awaitable[T]],
                      policy: RetryPolicy = API_RETRY_POLICY,
                      on_retry: Optional[RetryObserver] = None) -> T:
        """Run ``operation`` until it succeeds, fails finally, or attempts run out.

        The last error is re-raised unchanged. Access layer errors get the
        number of attempts made recorded on ``error.attempts``.
        """
        attempt = 1
        while True:
            try:
                result = await operation()
            except Exception as e:
                retryable = policy.retry_predicate(e)
                if not retryable or attempt >= policy.max_attempts:
                    if isinstance(e, AccessLayerException):
                        e.attempts = attempt
                    if retryable:
                        self.logger.error(
                            "All retry attempts exhausted",
                            policy=policy.name,
                            attempt=attempt,
                            max_attempts=policy.max_attempts,
                            error=str(e)
                        )
                    raise

                delay = self.calculate_delay(attempt, policy)
                self._notify(on_retry, attempt, e)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    policy=policy.name,
                    attempt=attempt,
                    delay=round(delay, 3),
                    error=str(e)
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 1:
                self.logger.info("Retry succeeded", policy=policy.name, attempt=attempt)
            return result

    def _notify(self, on_retry: Optional[RetryObserver], attempt: int, error: BaseException):
        if on_retry is None:
            return
        try:
            on_retry(attempt, error)
        except Exception as hook_error:
            # Observers must not change the retry outcome.
            self.logger.error("on_retry hook raised", attempt=attempt, error=str(hook_error))
