"""Durable key-value store adapters backing the second cache tier."""

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.adapters.storage.factory import create_key_value_store
from ai_governance.adapters.storage.in_memory import InMemoryKeyValueStore
from ai_governance.adapters.storage.redis_store import RedisKeyValueStore

__all__ = [
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_key_value_store",
]
