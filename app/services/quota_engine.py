"""Quota consumption: fixed window counter plus optional cool-down.

Each key owns two independent pieces of state in the quota store:

- a window counter, created on first consume (or after the previous window
  expired) with a lifetime of the policy window, and incremented atomically
  on every consume that is not blocked;
- a block flag, set for the policy's block duration by the consume that first
  pushes the counter past the quota.

While the block flag is live every consume is rejected as blocked and the
counter is left untouched, whatever happens to the window in the meantime.
The flag's lifetime is independent of the window, so a window reset never
shortens a block.

Atomicity comes entirely from the store primitives; this class keeps no
per-key state of its own.
"""

from __future__ import annotations

import logging

from app.adapters.quota_store.base import AbstractQuotaStore
from app.schemas.quota import Rate, RatePolicy

logger = logging.getLogger(__name__)


class QuotaEngine:
    """Applies :class:`RatePolicy` limits against a shared quota store."""

    def __init__(self, store: AbstractQuotaStore, *, key_prefix: str = "quota-gate") -> None:
        if not key_prefix:
            raise ValueError("key_prefix must be a non-empty string")

        self._store = store
        self._key_prefix = key_prefix

    @property
    def store(self) -> AbstractQuotaStore:
        return self._store

    def window_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def block_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}:blocked"

    def consume(self, rate_policy: RatePolicy) -> Rate:
        """Consume one unit of quota for ``rate_policy.key``.

        Args:
            rate_policy: Derived key plus window, quota and optional block.

        Returns:
            Rate: The window count after this consume and the exceeded/blocked
                flags. The ``count + 1``-th consume in a window is the first
                one reported as exceeded.

        Raises:
            ValueError: If the key is empty.
            QuotaStoreUnavailableError: If the store cannot be reached in time.
        """
        if not rate_policy.key:
            raise ValueError("key must be a non-empty string")

        block_duration = rate_policy.block_duration
        if block_duration is not None and self._store.flag_active(self.block_key(rate_policy.key)):
            return Rate(count=None, exceeded=True, blocked=True)

        count = self._store.increment_with_expiry(
            self.window_key(rate_policy.key), rate_policy.duration
        )
        exceeded = count > rate_policy.count

        # Only the consume that crosses the quota starts the cool-down; the
        # atomic counter guarantees exactly one caller observes count + 1.
        if block_duration is not None and count == rate_policy.count + 1:
            self._store.set_flag_with_expiry(self.block_key(rate_policy.key), block_duration)
            logger.info(
                "quota_engine.block_started",
                extra={
                    "limit": rate_policy.count,
                    "block_s": block_duration.total_seconds(),
                },
            )

        return Rate(count=count, exceeded=exceeded, blocked=False)
