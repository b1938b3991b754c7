"""
Adapters package for the Books Service.

Adapters perform single unprotected requests and map every failure onto
the shared error taxonomy. Caching, retries and circuit breaking belong
to the gateway, not here.
"""

from .google_books_client import GoogleBooksClient

__all__ = ["GoogleBooksClient"]
