"""Redis-backed quota store shared by every gate instance.

The counter update runs as one Lua script so the increment and the expiry
are applied atomically on the server. Flags are plain keys written with
``SET ... PX`` and tested with ``EXISTS``.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import redis
from redis.exceptions import RedisError

from app.adapters.quota_store.base import AbstractQuotaStore
from app.core.errors import QuotaStoreUnavailableError

logger = logging.getLogger(__name__)

# Sets the expiry only when the counter is new, or when a previous writer
# died between INCR and PEXPIRE and left a counter without a TTL.
INCREMENT_WITH_EXPIRY_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 or redis.call('PTTL', KEYS[1]) < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return count
"""


def _to_millis(ttl: timedelta) -> int:
    return max(1, int(ttl / timedelta(milliseconds=1)))


class RedisQuotaStore(AbstractQuotaStore):
    """Quota store backed by a Redis server."""

    def __init__(self, client: redis.Redis) -> None:
        """
        Args:
            client: Synchronous Redis client; its socket timeouts bound every call.
        """
        self._redis = client
        self._increment = client.register_script(INCREMENT_WITH_EXPIRY_SCRIPT)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float) -> "RedisQuotaStore":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def increment_with_expiry(self, key: str, ttl: timedelta) -> int:
        try:
            return int(self._increment(keys=[key], args=[_to_millis(ttl)]))
        except RedisError as exc:
            raise self._unavailable("increment_with_expiry", exc) from exc

    def set_flag_with_expiry(self, key: str, ttl: timedelta) -> None:
        try:
            self._redis.set(key, 1, px=_to_millis(ttl))
        except RedisError as exc:
            raise self._unavailable("set_flag_with_expiry", exc) from exc

    def flag_active(self, key: str) -> bool:
        try:
            return bool(self._redis.exists(key))
        except RedisError as exc:
            raise self._unavailable("flag_active", exc) from exc

    def close(self) -> None:
        self._redis.close()

    @staticmethod
    def _unavailable(operation: str, exc: RedisError) -> QuotaStoreUnavailableError:
        logger.error(
            "quota_store.redis_error",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return QuotaStoreUnavailableError(
            code="quota_store_unavailable",
            message="The quota store did not respond in time",
            details={"backend": "redis", "context": {"operation": operation}},
        )
