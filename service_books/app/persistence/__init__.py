"""
Persistence contract for fetched book records.
"""

from .repository import (
    BookRecord,
    BookRepository,
    GuardedBookRepository,
    InMemoryBookRepository,
    format_book_for_database,
)

__all__ = [
    "BookRecord",
    "BookRepository",
    "GuardedBookRepository",
    "InMemoryBookRepository",
    "format_book_for_database",
]
