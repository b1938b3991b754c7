"""
Books caching package.

Successful provider responses only; failures are never cached.
"""

from .response_cache import CacheEntry, ResponseCache

__all__ = ["CacheEntry", "ResponseCache"]
