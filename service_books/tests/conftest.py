"""
Fixtures for books service tests.
"""

import random

import pytest

from service_books.app.adapters.google_books_client import GoogleBooksClient
from service_books.app.caching.response_cache import ResponseCache
from service_books.app.gateway import BookGateway
from service_books.app.ratelimit.sliding_window import SlidingWindowRateLimiter
from shared.circuit_breaker import external_provider_breaker
from shared.metrics import MetricsCollector
from shared.retry import RetryExecutor
from shared.test_helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway_factory(clock):
    """Build a gateway whose every timing dependency runs on ``clock``."""

    def build(transport, **kwargs) -> BookGateway:
        return BookGateway(
            client=GoogleBooksClient("https://books.test/books/v1", transport=transport),
            rate_limiter=SlidingWindowRateLimiter(
                kwargs.pop("max_requests", 100), 60.0, clock=clock, sleep=clock.sleep
            ),
            cache=ResponseCache(kwargs.pop("ttl_seconds", 300.0), kwargs.pop("max_size", 100), clock=clock),
            circuit_breaker=external_provider_breaker(clock=clock),
            retry_executor=RetryExecutor(sleep=clock.sleep, rng=random.Random(1)),
            metrics=kwargs.pop("metrics", None) or MetricsCollector("books"),
            **kwargs,
        )

    return build
