"""Factory for creating the configured quota store."""

from app.adapters.quota_store.base import AbstractQuotaStore
from app.adapters.quota_store.in_memory import InMemoryQuotaStore
from app.adapters.quota_store.redis_store import RedisQuotaStore
from app.core.config import GateSettings
from app.core.errors import ConfigurationAppError


def create_quota_store(gate_settings: GateSettings) -> AbstractQuotaStore:
    """Instantiate the quota store selected by ``GATE_STORE_BACKEND``.

    Args:
        gate_settings: Resolved gate settings.

    Returns:
        AbstractQuotaStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend name is not supported.
    """
    backend = gate_settings.store_backend.lower()

    if backend == "memory":
        return InMemoryQuotaStore()

    if backend == "redis":
        return RedisQuotaStore.from_url(
            gate_settings.redis_url,
            timeout_seconds=gate_settings.store_timeout_seconds,
        )

    raise ConfigurationAppError(
        code="unknown_store_backend",
        message=(
            f"Unknown quota store backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
