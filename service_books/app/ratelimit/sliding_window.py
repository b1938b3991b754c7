"""
Sliding window admission control for outbound provider calls.
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_WAIT_BUFFER = 0.1


class SlidingWindowRateLimiter:
    """Bounds outbound calls to ``max_requests`` per trailing ``window_seconds``.

    ``admit`` never fails, it only delays. Waiting callers are not queued:
    each one recomputes its wait after waking, so ordering between
    concurrent callers is best effort.
    """

    def __init__(self,
                 max_requests: int = DEFAULT_MAX_REQUESTS,
                 window_seconds: float = DEFAULT_WINDOW_SECONDS,
                 *,
                 wait_buffer: float = DEFAULT_WAIT_BUFFER,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 metrics: Optional["MetricsCollector"] = None):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.wait_buffer = wait_buffer
        self.metrics = metrics
        self.logger = get_logger("books.rate_limiter")
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()

    def _purge(self, now: float):
        """Drop admissions that fell out of the trailing window."""
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    async def admit(self) -> None:
        """Suspend until the caller may issue one request."""
        while True:
            now = self._clock()
            self._purge(now)

            if len(self._timestamps) < self.max_requests:
                self._timestamps.append(now)
                return

            wait = self.window_seconds - (now - self._timestamps[0]) + self.wait_buffer
            self.logger.info(
                "Rate limit reached, waiting before next request",
                wait_seconds=round(wait, 3),
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
            )
            if self.metrics is not None:
                self.metrics.increment_counter("rate_limit_waits_total")
            await self._sleep(wait)

    def get_count(self) -> int:
        """Number of admissions inside the current window."""
        self._purge(self._clock())
        return len(self._timestamps)

    def get_stats(self) -> dict:
        return {
            "current_count": self.get_count(),
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
        }
