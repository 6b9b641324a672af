"""Unit tests for the Redis quota store."""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.adapters.quota_store.redis_store import (
    INCREMENT_WITH_EXPIRY_SCRIPT,
    RedisQuotaStore,
)
from app.core.errors import QuotaStoreUnavailableError


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = MagicMock(return_value=1)
    return client


def test_registers_increment_script(redis_client: MagicMock) -> None:
    RedisQuotaStore(redis_client)

    redis_client.register_script.assert_called_once_with(INCREMENT_WITH_EXPIRY_SCRIPT)


def test_increment_runs_script_with_ttl_in_millis(redis_client: MagicMock) -> None:
    script = redis_client.register_script.return_value
    script.return_value = 4
    store = RedisQuotaStore(redis_client)

    assert store.increment_with_expiry("quota-gate:k", timedelta(minutes=1)) == 4
    script.assert_called_once_with(keys=["quota-gate:k"], args=[60_000])


def test_sub_millisecond_ttl_rounds_up_to_one(redis_client: MagicMock) -> None:
    script = redis_client.register_script.return_value
    store = RedisQuotaStore(redis_client)

    store.increment_with_expiry("k", timedelta(microseconds=10))

    script.assert_called_once_with(keys=["k"], args=[1])


def test_set_flag_uses_px_expiry(redis_client: MagicMock) -> None:
    store = RedisQuotaStore(redis_client)

    store.set_flag_with_expiry("k:blocked", timedelta(seconds=30))

    redis_client.set.assert_called_once_with("k:blocked", 1, px=30_000)


@pytest.mark.parametrize(("exists", "expected"), [(0, False), (1, True)])
def test_flag_active_uses_exists(redis_client: MagicMock, exists: int, expected: bool) -> None:
    redis_client.exists.return_value = exists
    store = RedisQuotaStore(redis_client)

    assert store.flag_active("k:blocked") is expected
    redis_client.exists.assert_called_once_with("k:blocked")


@pytest.mark.parametrize("error", [RedisTimeoutError("timed out"), RedisConnectionError("refused")])
def test_increment_errors_become_store_unavailable(redis_client: MagicMock, error: Exception) -> None:
    redis_client.register_script.return_value.side_effect = error
    store = RedisQuotaStore(redis_client)

    with pytest.raises(QuotaStoreUnavailableError) as exc_info:
        store.increment_with_expiry("k", timedelta(seconds=1))

    assert exc_info.value.code == "quota_store_unavailable"
    assert exc_info.value.__cause__ is error


def test_flag_errors_become_store_unavailable(redis_client: MagicMock) -> None:
    redis_client.exists.side_effect = RedisTimeoutError("timed out")
    redis_client.set.side_effect = RedisTimeoutError("timed out")
    store = RedisQuotaStore(redis_client)

    with pytest.raises(QuotaStoreUnavailableError):
        store.flag_active("k")
    with pytest.raises(QuotaStoreUnavailableError):
        store.set_flag_with_expiry("k", timedelta(seconds=1))


def test_from_url_applies_timeouts() -> None:
    with patch("app.adapters.quota_store.redis_store.redis.Redis.from_url") as from_url:
        RedisQuotaStore.from_url("redis://cache:6379/1", timeout_seconds=0.5)

    from_url.assert_called_once_with(
        "redis://cache:6379/1",
        socket_timeout=0.5,
        socket_connect_timeout=0.5,
    )


def test_close_closes_client(redis_client: MagicMock) -> None:
    RedisQuotaStore(redis_client).close()

    redis_client.close.assert_called_once_with()


# The tests below run the increment script and the flag commands against an
# in-process Redis server with Lua support.


@pytest.fixture
def fake_redis() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
def script_store(fake_redis: fakeredis.FakeRedis) -> RedisQuotaStore:
    return RedisQuotaStore(fake_redis)


def test_script_counter_starts_at_one_and_increments(script_store: RedisQuotaStore) -> None:
    values = [script_store.increment_with_expiry("k", timedelta(seconds=10)) for _ in range(3)]

    assert values == [1, 2, 3]


def test_script_sets_ttl_on_creation_only(
    script_store: RedisQuotaStore, fake_redis: fakeredis.FakeRedis
) -> None:
    script_store.increment_with_expiry("k", timedelta(seconds=10))
    script_store.increment_with_expiry("k", timedelta(seconds=100))

    assert 0 < fake_redis.pttl("k") <= 10_000


def test_script_repairs_counter_without_ttl(
    script_store: RedisQuotaStore, fake_redis: fakeredis.FakeRedis
) -> None:
    fake_redis.set("k", 4)

    assert script_store.increment_with_expiry("k", timedelta(seconds=10)) == 5
    assert 0 < fake_redis.pttl("k") <= 10_000


def test_script_counter_resets_after_expiry(script_store: RedisQuotaStore) -> None:
    script_store.increment_with_expiry("k", timedelta(milliseconds=50))
    script_store.increment_with_expiry("k", timedelta(milliseconds=50))

    time.sleep(0.1)

    assert script_store.increment_with_expiry("k", timedelta(milliseconds=50)) == 1


def test_script_counters_are_isolated_by_key(script_store: RedisQuotaStore) -> None:
    script_store.increment_with_expiry("k1", timedelta(seconds=10))

    assert script_store.increment_with_expiry("k2", timedelta(seconds=10)) == 1


def test_flag_lifecycle_on_server(script_store: RedisQuotaStore) -> None:
    assert script_store.flag_active("f") is False

    script_store.set_flag_with_expiry("f", timedelta(milliseconds=50))
    assert script_store.flag_active("f") is True

    time.sleep(0.1)
    assert script_store.flag_active("f") is False


def test_script_concurrent_increments_observe_distinct_values(
    script_store: RedisQuotaStore,
) -> None:
    workers = 20
    barrier = threading.Barrier(workers)
    seen: list[int] = []
    lock = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        value = script_store.increment_with_expiry("shared", timedelta(minutes=1))
        with lock:
            seen.append(value)

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(seen) == list(range(1, workers + 1))
