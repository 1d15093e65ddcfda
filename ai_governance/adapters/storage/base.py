from abc import ABC, abstractmethod


class AbstractKeyValueStore(ABC):
	"""Interface for durable string key-value stores backing the second cache tier.

	Implementations raise StorageAppError on failures; callers decide whether
	to propagate or swallow them.
	"""

	@abstractmethod
	async def get(self, key: str) -> str | None:
		"""Return the stored value, or None when the key is absent."""
		...

	@abstractmethod
	async def set(self, key: str, value: str) -> None:
		"""Store a value, replacing any previous value for the key."""
		...

	@abstractmethod
	async def delete(self, key: str) -> None:
		"""Remove a key. Deleting a missing key is not an error."""
		...

	@abstractmethod
	async def keys(self, prefix: str) -> list[str]:
		"""List every stored key starting with ``prefix``."""
		...

	async def close(self) -> None:
		"""Release connections held by the store."""
		return None
