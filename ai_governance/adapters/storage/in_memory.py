"""Process-local key-value store.

Useful for tests and single-process deployments. An optional ``max_entries``
quota makes writes of new keys fail the way browser or edge storage does
when it runs out of room.
"""

from __future__ import annotations

import threading

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.core.errors import StorageAppError


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """Dictionary-backed store with an optional entry quota."""

    def __init__(self, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._data: dict[str, str] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        with self._lock:
            if (
                self._max_entries is not None
                and key not in self._data
                and len(self._data) >= self._max_entries
            ):
                raise StorageAppError(
                    code="storage_full",
                    message="Key-value store quota exceeded",
                    details={"backend": "memory", "key": key[:32]},
                )
            self._data[key] = value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def keys(self, prefix: str) -> list[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]
