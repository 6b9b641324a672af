"""In-memory quota store.

Notes:
- Per-process only: running multiple workers multiplies the effective quota.
- Thread-safe: a single lock guards counters and flags, so every primitive is
  one critical section.
- Expired entries are dropped lazily on access and swept periodically.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from app.adapters.quota_store.base import AbstractQuotaStore


@dataclass
class _Counter:
    value: int
    expires_at: float


class InMemoryQuotaStore(AbstractQuotaStore):
    """Quota store keeping TTL'd counters and flags in process memory."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 1000,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source returning seconds; must be monotonic in production.
            sweep_every: Purge all expired entries after this many writes.

        Raises:
            ValueError: If sweep_every is invalid.
        """
        if sweep_every < 1:
            raise ValueError("sweep_every must be >= 1")

        self._clock = clock
        self._sweep_every = sweep_every
        self._lock = threading.Lock()
        self._counters: dict[str, _Counter] = {}
        self._flags: dict[str, float] = {}
        self._writes = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters) + len(self._flags)

    def increment_with_expiry(self, key: str, ttl: timedelta) -> int:
        now = self._clock()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                counter = _Counter(value=0, expires_at=now + ttl.total_seconds())
                self._counters[key] = counter
            counter.value += 1
            self._after_write_locked(now)
            return counter.value

    def set_flag_with_expiry(self, key: str, ttl: timedelta) -> None:
        now = self._clock()
        with self._lock:
            self._flags[key] = now + ttl.total_seconds()
            self._after_write_locked(now)

    def flag_active(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._flags.get(key)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._flags[key]
                return False
            return True

    def _after_write_locked(self, now: float) -> None:
        self._writes += 1
        if self._writes % self._sweep_every:
            return

        for key in [k for k, c in self._counters.items() if c.expires_at <= now]:
            del self._counters[key]
        for key in [k for k, exp in self._flags.items() if exp <= now]:
            del self._flags[key]
