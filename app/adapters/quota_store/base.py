"""Quota store interface.

The engine depends on this abstraction only. Each primitive must be atomic
per key on its own; the engine never composes a read and a write into one
logical update.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta


class AbstractQuotaStore(ABC):
    """Interface for shared quota stores."""

    @abstractmethod
    def increment_with_expiry(self, key: str, ttl: timedelta) -> int:
        """Atomically increment a counter, starting a new one if absent or expired.

        A new counter starts at 1 and expires ``ttl`` after creation. Later
        increments never move the expiry.

        Args:
            key: Store key of the counter.
            ttl: Lifetime of a newly created counter.

        Returns:
            The counter value after the increment.

        Raises:
            QuotaStoreUnavailableError: If the store cannot be reached in time.
        """
        raise NotImplementedError

    @abstractmethod
    def set_flag_with_expiry(self, key: str, ttl: timedelta) -> None:
        """Set a flag that stays active for ``ttl``.

        Raises:
            QuotaStoreUnavailableError: If the store cannot be reached in time.
        """
        raise NotImplementedError

    @abstractmethod
    def flag_active(self, key: str) -> bool:
        """Return True while a flag set by :meth:`set_flag_with_expiry` is live.

        Raises:
            QuotaStoreUnavailableError: If the store cannot be reached in time.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release connections held by the store (no-op by default)."""
