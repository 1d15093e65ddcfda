"""Redis-backed key-value store for the durable cache tier."""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.core.errors import StorageAppError

logger = logging.getLogger(__name__)


class RedisKeyValueStore(AbstractKeyValueStore):
    """Key-value store on top of ``redis.asyncio``.

    Every key is stored under ``namespace`` so prefix listing and clearing
    never touch keys owned by other applications sharing the instance.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        namespace: str = "ai_governance:",
        client: Optional[redis.Redis] = None,
    ) -> None:
        """Initialize the store.

        Args:
            redis_url: Connection URL; required unless a client is injected.
            namespace: Prefix applied to every key.
            client: Pre-built client (tests, shared connections).

        Raises:
            ValueError: If neither a URL nor a client is provided.
        """
        if client is None and not redis_url:
            raise ValueError("Redis URL required. Set STORAGE_REDIS_URL or pass redis_url.")
        self.redis_url = redis_url
        self.namespace = namespace
        self.client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Establish the Redis connection and verify it with PING."""
        if self.client is None:
            self.client = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        try:
            await self.client.ping()
        except RedisError as exc:
            logger.error("storage.redis_connect_failed", extra={"error_msg": str(exc)})
            raise StorageAppError(
                code="storage_unavailable",
                message="Could not connect to Redis",
                details={"backend": "redis"},
            ) from exc
        logger.info("storage.redis_connected", extra={"namespace": self.namespace})

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _require_client(self) -> redis.Redis:
        if self.client is None:
            raise StorageAppError(
                code="storage_unavailable",
                message="Redis store is not connected",
                details={"backend": "redis"},
            )
        return self.client

    def _wrap(self, operation: str, exc: Exception) -> StorageAppError:
        return StorageAppError(
            code="storage_unavailable",
            message=f"Redis {operation} failed: {exc}",
            details={"backend": "redis"},
        )

    async def get(self, key: str) -> str | None:
        client = self._require_client()
        try:
            return await client.get(self._make_key(key))
        except RedisError as exc:
            raise self._wrap("GET", exc) from exc

    async def set(self, key: str, value: str) -> None:
        client = self._require_client()
        try:
            await client.set(self._make_key(key), value)
        except RedisError as exc:
            raise self._wrap("SET", exc) from exc

    async def delete(self, key: str) -> None:
        client = self._require_client()
        try:
            await client.delete(self._make_key(key))
        except RedisError as exc:
            raise self._wrap("DEL", exc) from exc

    async def keys(self, prefix: str) -> list[str]:
        client = self._require_client()
        pattern = f"{self._make_key(prefix)}*"
        found: list[str] = []
        try:
            cursor = 0
            while True:
                cursor, batch = await client.scan(cursor, match=pattern, count=100)
                found.extend(key[len(self.namespace):] for key in batch)
                if cursor == 0:
                    break
        except RedisError as exc:
            raise self._wrap("SCAN", exc) from exc
        return found

    async def close(self) -> None:
        """Close the Redis connection."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("storage.redis_closed")
