"""Factory pattern for creating key-value store instances."""

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.adapters.storage.in_memory import InMemoryKeyValueStore
from ai_governance.adapters.storage.redis_store import RedisKeyValueStore
from ai_governance.core.config import StorageSettings
from ai_governance.core.errors import ValidationAppError


def create_key_value_store(storage_settings: StorageSettings) -> AbstractKeyValueStore:
    """Instantiate the durable store selected by configuration.

    Redis stores are returned unconnected; call ``connect()`` during startup.

    Args:
        storage_settings: Resolved storage settings.

    Returns:
        AbstractKeyValueStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
    """
    backend = storage_settings.backend.lower()

    if backend == "memory":
        return InMemoryKeyValueStore(max_entries=storage_settings.max_entries)

    if backend == "redis":
        if not storage_settings.redis_url:
            raise ValidationAppError(
                code="storage_missing_redis_url",
                message="Redis backend requires STORAGE_REDIS_URL environment variable",
            )
        return RedisKeyValueStore(
            storage_settings.redis_url,
            namespace=storage_settings.namespace,
        )

    raise ValidationAppError(
        code="storage_unknown_backend",
        message=f"Unknown storage backend: '{backend}'. Supported backends: memory, redis",
    )
