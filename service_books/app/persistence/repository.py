"""
Persistence collaborator for fetched book records.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from shared.circuit_breaker import CircuitBreaker
from shared.logging import get_logger
from shared.retry import PERSISTENCE_RETRY_POLICY, RetryExecutor, RetryPolicy
from ..domain.models import GoogleBook


class BookRecord(BaseModel):
    """Row shape stored by the persistence layer."""

    google_books_id: str
    title: str = "Unknown Title"
    authors: List[str] = Field(default_factory=list)
    cover_url: Optional[str] = None
    description: Optional[str] = None
    page_count: Optional[int] = None
    published_date: Optional[date] = None
    genres: List[str] = Field(default_factory=list)
    isbn_10: Optional[str] = None
    isbn_13: Optional[str] = None


def _parse_published_date(value: Optional[str]) -> Optional[date]:
    # Provider dates come as YYYY, YYYY-MM or YYYY-MM-DD.
    if not value:
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m", "%Y"):
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def format_book_for_database(book: GoogleBook) -> BookRecord:
    """Map a provider volume onto the stored record shape."""
    info = book.volume_info
    links = info.image_links
    cover_url = None
    if links is not None:
        cover_url = links.thumbnail or links.small_thumbnail

    return BookRecord(
        google_books_id=book.id,
        title=info.title or "Unknown Title",
        authors=list(info.authors),
        cover_url=cover_url,
        description=info.description or None,
        page_count=info.page_count or None,
        published_date=_parse_published_date(info.published_date),
        genres=list(info.categories),
        isbn_10=book.identifier("ISBN_10"),
        isbn_13=book.identifier("ISBN_13"),
    )


class BookRepository(ABC):
    """Durable storage for book records, keyed by provider id."""

    @abstractmethod
    async def upsert(self, record: BookRecord) -> BookRecord:
        """Insert or replace the record with the same ``google_books_id``."""

    @abstractmethod
    async def get(self, google_books_id: str) -> Optional[BookRecord]:
        """Return the stored record or ``None``."""


class InMemoryBookRepository(BookRepository):
    """Process-local repository for local runs and tests."""

    def __init__(self):
        self._records: Dict[str, BookRecord] = {}

    async def upsert(self, record: BookRecord) -> BookRecord:
        self._records[record.google_books_id] = record
        return record

    async def get(self, google_books_id: str) -> Optional[BookRecord]:
        return self._records.get(google_books_id)

    def __len__(self) -> int:
        return len(self._records)


class GuardedBookRepository(BookRepository):
    """Wraps a repository with the persistence breaker and retry policy."""

    def __init__(self,
                 repository: BookRepository,
                 circuit_breaker: CircuitBreaker,
                 retry_executor: RetryExecutor,
                 retry_policy: RetryPolicy = PERSISTENCE_RETRY_POLICY):
        self.repository = repository
        self.circuit_breaker = circuit_breaker
        self.retry_executor = retry_executor
        self.retry_policy = retry_policy
        self.logger = get_logger("books.persistence")

    async def upsert(self, record: BookRecord) -> BookRecord:
        stored = await self.circuit_breaker.call(
            self.retry_executor.execute,
            lambda: self.repository.upsert(record),
            self.retry_policy,
        )
        self.logger.debug("Book record stored", google_books_id=record.google_books_id)
        return stored

    async def get(self, google_books_id: str) -> Optional[BookRecord]:
        return await self.circuit_breaker.call(
            self.retry_executor.execute,
            lambda: self.repository.get(google_books_id),
            self.retry_policy,
        )

    async def cache_book(self, book: GoogleBook) -> BookRecord:
        """Persist a fetched provider volume."""
        return await self.upsert(format_book_for_database(book))
