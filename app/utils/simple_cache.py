"""In-memory LRU cache used to memoise policy resolution.

Thread-safe and bounded. Unlike a plain ``dict.get`` lookup, a cached value
that is falsy (e.g. an empty list of policies) is still a hit: callers test
``value is MISSING`` rather than truthiness.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover - representation only
        return "MISSING"


MISSING = _Missing()


class SimpleLRUCache(Generic[K, V]):
    """Thread-safe, in-memory cache with LRU eviction.

    Attributes:
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(self, max_entries: int | None = 1024) -> None:
        self._max_entries = max_entries
        self._store: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SimpleLRUCache(max_entries={self._max_entries}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses}, "
            f"evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: K) -> V | _Missing:
        """Retrieve a cached value.

        Args:
            key: Cache key.

        Returns:
            Cached value (possibly empty) or ``MISSING`` if not cached.
        """

        with self._lock:
            if key not in self._store:
                self._misses += 1
                return MISSING

            self._hits += 1
            self._store.move_to_end(key)  # mark as recently used
            return self._store[key]

    def set(self, key: K, value: V) -> None:
        """Store a value, evicting the least recently used entry if full."""

        with self._lock:
            self._store[key] = value
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

    def get_or_compute(self, key: K, compute) -> V:
        """Return the cached value for ``key``, computing and storing it once.

        ``compute`` runs under the cache lock so concurrent callers for the
        same key never compute twice.
        """

        with self._lock:
            value = self.get(key)
            if value is MISSING:
                value = compute()
                self.set(key, value)
            return value

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            key, _ = self._store.popitem(last=False)
            self._evictions += 1
            logger.debug("cache.evict", extra={"cache_key": str(key)[:64]})
