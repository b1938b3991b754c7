"""
Resilient gateway to the external book metadata provider.

A call is answered from the response cache when possible. Otherwise the
provider request runs inside the circuit breaker, which wraps the retry
executor, which waits for rate limiter admission before each attempt::

    breaker.execute(retry.execute(admit(); request()))

Successful results are cached. Failures are never cached. Callers always
receive a copy of the cached value.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, TYPE_CHECKING

from pydantic import BaseModel

from shared.circuit_breaker import CircuitBreaker
from shared.errors import AccessLayerException, ValidationError
from shared.logging import get_logger
from shared.retry import API_RETRY_POLICY, RetryExecutor, RetryPolicy
from .adapters.google_books_client import GoogleBooksClient
from .caching.response_cache import ResponseCache
from .domain.models import BookSearchResult, GoogleBook
from .ratelimit.sliding_window import SlidingWindowRateLimiter

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")

MAX_QUERY_LENGTH = 100
MAX_ID_LENGTH = 50
MIN_RESULTS = 1
MAX_RESULTS = 40
DEFAULT_RESULTS = 10


def normalize_query(query: Any) -> str:
    if query is None:
        return ""
    if not isinstance(query, str):
        raise ValidationError("Search query must be a string", {"query_type": type(query).__name__})
    return query.strip()[:MAX_QUERY_LENGTH]


def normalize_max_results(max_results: Any) -> int:
    if max_results is None:
        return DEFAULT_RESULTS
    if isinstance(max_results, bool):
        raise ValidationError("max_results must be an integer", {"max_results": max_results})
    try:
        value = int(max_results)
    except (TypeError, ValueError):
        raise ValidationError("max_results must be an integer", {"max_results": str(max_results)})
    return min(max(MIN_RESULTS, value), MAX_RESULTS)


def normalize_book_id(book_id: Any) -> str:
    if not isinstance(book_id, str) or not book_id.strip():
        raise ValidationError("Invalid book ID provided")
    return book_id.strip()[:MAX_ID_LENGTH]



def _detached(value: T) -> T:
    """Hand callers their own copy so mutating a result never alters the cache."""
    if isinstance(value, BaseModel):
        return value.model_copy(deep=True)
    return value

class BookGateway:
    """Cache-first, rate limited, retried and circuit-broken provider access."""

    def __init__(self,
                 client: GoogleBooksClient,
                 rate_limiter: SlidingWindowRateLimiter,
                 cache: ResponseCache,
                 circuit_breaker: CircuitBreaker,
                 retry_executor: RetryExecutor,
                 *,
                 retry_policy: RetryPolicy = API_RETRY_POLICY,
                 serve_stale_on_error: bool = False,
                 on_retry: Optional[Callable[[int, BaseException], Any]] = None,
                 metrics: Optional["MetricsCollector"] = None):
        self.client = client
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.circuit_breaker = circuit_breaker
        self.retry_executor = retry_executor
        self.retry_policy = retry_policy
        self.serve_stale_on_error = serve_stale_on_error
        self.on_retry = on_retry
        self.metrics = metrics
        self.logger = get_logger("books.gateway")

    async def search(self, query: Any, max_results: Any = DEFAULT_RESULTS) -> BookSearchResult:
        """Search volumes. A blank query returns an empty result without a request."""
        sanitized_query = normalize_query(query)
        validated_max_results = normalize_max_results(max_results)

        if not sanitized_query:
            return BookSearchResult(items=[], total_items=0)

        cache_key = f"search:{sanitized_query}:{validated_max_results}"
        return await self.call(
            "search",
            cache_key,
            lambda: self.client.search_volumes(sanitized_query, validated_max_results),
        )

    async def get_by_id(self, book_id: Any) -> GoogleBook:
        """Fetch one volume by its provider id."""
        sanitized_id = normalize_book_id(book_id)
        cache_key = f"book:{sanitized_id}"
        return await self.call(
            "get_by_id",
            cache_key,
            lambda: self.client.get_volume(sanitized_id),
        )

    async def call(self, operation: str, cache_key: str, perform: Callable[[], Awaitable[T]]) -> T:
        """Answer ``cache_key`` from cache or through the protected provider call."""
        stale = self.cache.peek(cache_key)
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.logger.debug("Using cached response", key=cache_key)
            self._count("cache_hits_total", operation=operation)
            return _detached(cached)
        self._count("cache_misses_total", operation=operation)

        async def admitted_call() -> T:
            await self.rate_limiter.admit()
            return await perform()

        def record_retry(attempt: int, error: BaseException):
            kind = error.kind.value if isinstance(error, AccessLayerException) else type(error).__name__
            self._count("retries_total", operation=operation, error_kind=kind)
            if self.on_retry is not None:
                self.on_retry(attempt, error)

        try:
            result = await self.circuit_breaker.execute(
                lambda: self.retry_executor.execute(admitted_call, self.retry_policy, on_retry=record_retry)
            )
        except AccessLayerException as exc:
            if self.metrics is not None:
                self.metrics.record_error(exc.kind.value)
            fallback = self.cache.get(cache_key)
            if fallback is None and self.serve_stale_on_error:
                fallback = stale
            if fallback is not None:
                self.logger.warning(
                    "Returning cached fallback for failed request",
                    key=cache_key,
                    error_code=exc.code,
                    error=exc.message,
                )
                self._count("stale_fallbacks_total", operation=operation)
                return _detached(fallback)
            self.logger.error(
                "Provider call failed",
                operation=operation,
                key=cache_key,
                error_code=exc.code,
                attempts=exc.attempts,
                error=exc.message,
            )
            raise

        self.cache.put(cache_key, result)
        return _detached(result)

    def get_rate_limit_status(self) -> Dict[str, int]:
        """Read-only snapshot for logs and dashboards."""
        return {
            "request_count": self.rate_limiter.get_count(),
            "cache_size": self.cache.size,
        }

    def _count(self, metric_name: str, **labels):
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)
