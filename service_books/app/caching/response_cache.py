"""
In-memory TTL cache for provider responses.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger


DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_SIZE = 100


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: float


class ResponseCache:
    """Bounded TTL map of successful provider responses.

    ``get`` only returns entries no older than ``ttl_seconds`` and removes
    expired ones it comes across. When ``put`` pushes the size past
    ``max_size`` the oldest-inserted entries are evicted first.
    """

    def __init__(self,
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 max_size: int = DEFAULT_MAX_SIZE,
                 *,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.logger = get_logger("books.response_cache")
        self._clock = clock
        # Insertion order is kept by the dict; overwrites move the key to the end.
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def size(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at <= self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_fresh(entry, self._clock()):
            return entry.value

        del self._entries[key]
        self.logger.debug("Expired cache entry removed", key=key)
        return None

    def peek(self, key: str) -> Optional[Any]:
        """Return the stored value regardless of age, without side effects."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite ``key`` stamped with the current time."""
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=self._clock())

        if len(self._entries) > self.max_size:
            self._evict()

    def _evict(self):
        overflow = len(self._entries) - self.max_size
        oldest = sorted(self._entries.values(), key=lambda entry: entry.inserted_at)[:overflow]
        for entry in oldest:
            del self._entries[entry.key]
        self.logger.debug("Evicted cache entries", count=len(oldest), max_size=self.max_size)

    def clear(self) -> None:
        self._entries.clear()
