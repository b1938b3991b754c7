"""
Google Books client for the books service.
"""

import time
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import ValidationError as ModelValidationError

from shared.logging import get_logger
from shared.errors import NetworkError, ServerError, error_from_status
from shared.tracing import get_tracer, trace_operation
from ..domain.models import BookSearchResult, GoogleBook

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from opentelemetry.trace import Tracer


DEFAULT_BASE_URL = "https://www.googleapis.com/books/v1"


class GoogleBooksClient:
    """Performs single, unprotected requests against the volumes API.

    Every failure leaves this class as a classified access layer error, so
    callers never have to look at httpx exceptions or raw status codes.
    """

    def __init__(self,
                 base_url: str = DEFAULT_BASE_URL,
                 *,
                 api_key: Optional[str] = None,
                 timeout: float = 10.0,
                 user_agent: str = "BookTracker/1.0",
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional["MetricsCollector"] = None,
                 tracer: Optional["Tracer"] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.user_agent = user_agent
        self.metrics = metrics
        self.logger = get_logger("books.google_books_client")
        self.tracer = tracer or get_tracer(__name__)
        self._transport = transport

    async def search_volumes(self, query: str, max_results: int) -> BookSearchResult:
        """Search volumes; expects an already normalised query."""
        params = {"q": query, "maxResults": max_results, "printType": "books"}
        data = await self._request("search", "/volumes", params)
        try:
            return BookSearchResult.model_validate(data)
        except ModelValidationError as exc:
            raise self._malformed("search", exc)

    async def get_volume(self, volume_id: str) -> GoogleBook:
        """Fetch a single volume by id."""
        data = await self._request("get_by_id", f"/volumes/{quote(volume_id, safe='')}", {})
        try:
            return GoogleBook.model_validate(data)
        except ModelValidationError as exc:
            raise self._malformed("get_by_id", exc)

    async def _request(self, operation: str, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        if self.api_key:
            params = {**params, "key": self.api_key}

        with trace_operation(self.tracer, f"google_books.{operation}", **{"http.url": url}) as span:
            start_time = time.time()
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.get(url, params=params, headers={"User-Agent": self.user_agent})
            except httpx.TimeoutException as exc:
                self._record(operation, "timeout", start_time)
                self.logger.warning("Google Books request timed out", url=url, error=str(exc))
                raise NetworkError(f"Request to Google Books timed out: {exc}", {"url": url}, timeout=True) from exc
            except httpx.TransportError as exc:
                self._record(operation, "network_error", start_time)
                self.logger.warning("Google Books request failed", url=url, error=str(exc))
                raise NetworkError(f"Network error talking to Google Books: {exc}", {"url": url}) from exc

            span.set_attribute("http.status_code", response.status_code)
            if response.is_success:
                self._record(operation, "success", start_time)
                try:
                    data = response.json()
                except ValueError as exc:
                    raise self._malformed(operation, exc)
                self.logger.debug("Google Books response received", url=url, status_code=response.status_code)
                return data

            self._record(operation, f"http_{response.status_code}", start_time)
            self.logger.error(
                "Google Books request failed",
                url=url,
                status_code=response.status_code,
                reason=response.reason_phrase,
            )
            raise error_from_status(
                response.status_code,
                details={"url": url, "reason": response.reason_phrase},
            )

    def _malformed(self, operation: str, exc: Exception) -> ServerError:
        self.logger.error("Malformed Google Books payload", operation=operation, error=str(exc))
        return ServerError(502, f"Malformed response from Google Books: {exc}")

    def _record(self, operation: str, outcome: str, start_time: float):
        if self.metrics is None:
            return
        self.metrics.increment_counter("upstream_requests_total", operation=operation, outcome=outcome)
        self.metrics.observe_histogram(
            "upstream_request_duration_seconds", time.time() - start_time, operation=operation
        )
