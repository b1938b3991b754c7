"""
Book metadata service for the Book Access Layer.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreakerManager, external_provider_breaker, persistence_breaker
from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException
from shared.retry import RetryExecutor
from .adapters.google_books_client import GoogleBooksClient
from .caching.response_cache import ResponseCache
from .gateway import BookGateway, DEFAULT_RESULTS
from .persistence.repository import BookRepository, GuardedBookRepository, InMemoryBookRepository
from .ratelimit.sliding_window import SlidingWindowRateLimiter


SERVICE_NAME = "books"
SERVICE_PORT = 8020


class BookService(BaseService):
    """Composition root: owns one gateway and the breakers it depends on."""

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 *,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 repository: Optional[BookRepository] = None,
                 retry_executor: Optional[RetryExecutor] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.circuit_breakers = CircuitBreakerManager()
        provider_breaker = self.circuit_breakers.register(external_provider_breaker(
            failure_threshold=self.config.provider_failure_threshold,
            open_timeout=self.config.provider_open_timeout,
            metrics=self.metrics,
        ))
        storage_breaker = self.circuit_breakers.register(persistence_breaker(
            failure_threshold=self.config.persistence_failure_threshold,
            open_timeout=self.config.persistence_open_timeout,
            metrics=self.metrics,
        ))
        self.retry_executor = retry_executor or RetryExecutor()

        self.gateway = BookGateway(
            client=GoogleBooksClient(
                self.config.google_books_base_url,
                api_key=self.config.google_books_api_key,
                timeout=self.config.request_timeout,
                user_agent=self.config.user_agent,
                transport=transport,
                metrics=self.metrics,
            ),
            rate_limiter=SlidingWindowRateLimiter(
                self.config.rate_limit_max_requests,
                self.config.rate_limit_window_seconds,
                metrics=self.metrics,
            ),
            cache=ResponseCache(self.config.cache_ttl_seconds, self.config.cache_max_size),
            circuit_breaker=provider_breaker,
            retry_executor=self.retry_executor,
            serve_stale_on_error=self.config.serve_stale_on_error,
            metrics=self.metrics,
        )
        self.repository = GuardedBookRepository(
            repository if repository is not None else InMemoryBookRepository(),
            storage_breaker,
            self.retry_executor,
        )

        self._setup_book_routes()
        self.app.state.book_service = self

    def _setup_book_routes(self):

        @self.app.get("/")
        async def root():
            return {"service": self.service_name, "message": "Book Access Layer - Book Metadata Service"}

        @self.app.get("/api/v1/books/search")
        async def search_books(
            q: str = Query("", description="Free text volume query"),
            max_results: int = Query(DEFAULT_RESULTS, description="Clamped into [1, 40]"),
        ) -> Dict[str, Any]:
            result = await self.gateway.search(q, max_results)
            return result.model_dump(by_alias=True)

        @self.app.get("/api/v1/books/{book_id}")
        async def get_book(book_id: str) -> Dict[str, Any]:
            book = await self.gateway.get_by_id(book_id)
            try:
                await self.repository.cache_book(book)
            except AccessLayerException as exc:
                # The provider result is still valid; storage catches up on the next fetch.
                self.logger.warning("Failed to store fetched book", book_id=book.id, error_code=exc.code, error=exc.message)
            return book.model_dump(by_alias=True)

        @self.app.get("/api/v1/status")
        async def status() -> Dict[str, Any]:
            return {
                "status": "operational",
                "rate_limit": self.gateway.get_rate_limit_status(),
                "circuit_breakers": self.circuit_breakers.get_all_states(),
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            name: "degraded" if state["state"] == "open" else "ok"
            for name, state in self.circuit_breakers.get_all_states().items()
        }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create the books FastAPI application."""
    return BookService(config, **kwargs).app


if __name__ == "__main__":
    BookService(get_config(SERVICE_NAME, SERVICE_PORT)).run()
