"""Two-tier response cache used to avoid repeated provider calls.

Tier 1 is a bounded in-process mapping; Tier 2 is a durable key-value store
that survives restarts. Tier 1 is a working set of Tier 2. The cache is a
best-effort optimization: durable-tier failures are logged and degrade to a
miss or a no-op save, never to an error visible to the caller.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
import zlib
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.schemas.generation import GenerationRequest, GenerationResponse
from ai_governance.utils.fingerprint import DEFAULT_KEY_PREFIX, RequestFingerprint, build_cache_key
from ai_governance.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

_COMPRESSED_MARKER = "z:"


@dataclass(frozen=True)
class CacheConfig:
    """Cache configuration.

    Attributes:
        max_size: Maximum number of entries kept in the in-process tier.
        default_ttl_seconds: Lifetime applied when ``set`` gets no override.
        enable_memory_tier: Use the in-process tier.
        enable_durable_tier: Use the durable key-value tier.
        compression_enabled: zlib-compress records written to the durable tier.
        key_prefix: Prefix of every cache key.
        cleanup_interval_seconds: Interval of the background expiry sweep.
    """

    max_size: int = 100
    default_ttl_seconds: float = 30 * 60
    enable_memory_tier: bool = True
    enable_durable_tier: bool = True
    compression_enabled: bool = True
    key_prefix: str = DEFAULT_KEY_PREFIX
    cleanup_interval_seconds: float = 10 * 60

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")
        if self.default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")


# Named configurations for different kinds of AI content.
CACHE_PRESETS: dict[str, dict[str, Any]] = {
    # Short-lived cache for user-specific content
    "personal": {"default_ttl_seconds": 5 * 60, "max_size": 20},
    "job_analysis": {"default_ttl_seconds": 30 * 60, "max_size": 50},
    "general": {"default_ttl_seconds": 2 * 60 * 60, "max_size": 100},
    # Static content rarely changes
    "static": {"default_ttl_seconds": 24 * 60 * 60, "max_size": 30},
}


@dataclass
class CacheEntry:
    """Container for a cached response with usage and expiration metadata."""

    response: GenerationResponse
    created_at: float
    hit_count: int
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def to_record(self) -> dict[str, Any]:
        return {
            "response": self.response.model_dump(),
            "created_at": self.created_at,
            "hit_count": self.hit_count,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CacheEntry:
        return cls(
            response=GenerationResponse.model_validate(record["response"]),
            created_at=float(record["created_at"]),
            hit_count=int(record["hit_count"]),
            expires_at=float(record["expires_at"]),
        )


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache metrics."""

    memory_size: int
    config: CacheConfig
    hits: int
    misses: int
    saves: int
    evictions: int
    hit_rate: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class AIResponseCache:
    """Two-tier TTL cache of provider responses with LFU-by-age eviction.

    When the in-process tier grows beyond ``max_size``, the entries with the
    fewest hits are evicted first, oldest first among equals. Entries that
    were reused survive over ones that were merely written recently.
    """

    def __init__(
        self,
        store: AbstractKeyValueStore | None = None,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            store: Durable tier; the durable tier is inactive without one.
            config: Cache configuration (defaults used when omitted).
            clock: Time source function returning UNIX time in seconds.
        """
        self._config = config or CacheConfig()
        self._store = store
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._saves = 0
        self._evictions = 0
        self._cleanup_task = PeriodicTask("cache-cleanup", self.cleanup, self._config.cleanup_interval_seconds)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"AIResponseCache(max_size={self._config.max_size}, "
            f"default_ttl_seconds={self._config.default_ttl_seconds}, size={len(self._memory)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def _memory_enabled(self) -> bool:
        return self._config.enable_memory_tier

    @property
    def _durable_enabled(self) -> bool:
        return self._config.enable_durable_tier and self._store is not None

    def cache_key(self, fingerprint: RequestFingerprint | GenerationRequest) -> str:
        if isinstance(fingerprint, GenerationRequest):
            fingerprint = RequestFingerprint.from_request(fingerprint)
        return build_cache_key(fingerprint, prefix=self._config.key_prefix)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get(self, fingerprint: RequestFingerprint | GenerationRequest) -> GenerationResponse | None:
        """Retrieve a cached response if one exists and has not expired.

        Args:
            fingerprint: Request fingerprint (or the request itself).

        Returns:
            A copy of the cached response, or None on miss.
        """
        key = self.cache_key(fingerprint)
        now = self._clock()

        if self._memory_enabled:
            with self._lock:
                entry = self._memory.get(key)
                if entry is not None:
                    if entry.is_valid(now):
                        entry.hit_count += 1
                        self._hits += 1
                        logger.debug("cache.hit", extra={"cache_key": key, "tier": "memory"})
                        return entry.response.model_copy()
                    del self._memory[key]

        if self._durable_enabled:
            entry = await self._read_durable(key)
            if entry is not None:
                if entry.is_valid(now):
                    entry.hit_count += 1
                    with self._lock:
                        if self._memory_enabled:
                            self._memory[key] = entry
                            self._enforce_capacity_locked()
                        self._hits += 1
                    logger.debug("cache.hit", extra={"cache_key": key, "tier": "durable"})
                    return entry.response.model_copy()
                await self._delete_durable(key)

        with self._lock:
            self._misses += 1
        logger.debug("cache.miss", extra={"cache_key": key})
        return None

    async def set(
        self,
        fingerprint: RequestFingerprint | GenerationRequest,
        response: GenerationResponse,
        ttl_seconds: float | None = None,
    ) -> None:
        """Store a response in both tiers.

        A failed durable write triggers an expired-entry sweep of the durable
        tier and is otherwise swallowed.

        Args:
            fingerprint: Request fingerprint (or the request itself).
            response: Provider response to memoize.
            ttl_seconds: Lifetime override; the configured default when None.

        Raises:
            ValueError: If ttl_seconds is not positive.
        """
        ttl = self._config.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be > 0")

        key = self.cache_key(fingerprint)
        now = self._clock()
        entry = CacheEntry(
            response=response.model_copy(),
            created_at=now,
            hit_count=0,
            expires_at=now + ttl,
        )

        if self._memory_enabled:
            with self._lock:
                self._memory[key] = entry
                self._enforce_capacity_locked()

        if self._durable_enabled:
            try:
                await self._store.set(key, self._encode(entry))
            except Exception as exc:
                logger.warning(
                    "cache.durable_write_failed",
                    extra={
                        "cache_key": key,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
                await self._sweep_durable()

        with self._lock:
            self._saves += 1
        logger.debug("cache.set", extra={"cache_key": key, "ttl_s": ttl, "size": len(self._memory)})

    async def cleanup(self) -> None:
        """Remove expired entries from both tiers."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._memory.items() if not entry.is_valid(now)]
            for key in expired:
                del self._memory[key]

        removed_durable = await self._sweep_durable() if self._durable_enabled else 0
        logger.info(
            "cache.cleanup",
            extra={
                "removed_memory": len(expired),
                "removed_durable": removed_durable,
                "size": len(self._memory),
            },
        )

    async def clear(self) -> None:
        """Empty both tiers and reset counters."""
        with self._lock:
            self._memory.clear()
            self._hits = 0
            self._misses = 0
            self._saves = 0
            self._evictions = 0

        if self._durable_enabled:
            for key in await self._list_durable_keys():
                await self._delete_durable(key)
        logger.info("cache.cleared")

    def get_stats(self) -> CacheStats:
        """Return cache metrics without exposing cached values."""
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                memory_size=len(self._memory),
                config=self._config,
                hits=self._hits,
                misses=self._misses,
                saves=self._saves,
                evictions=self._evictions,
                hit_rate=self._hits / lookups if lookups else 0.0,
            )

    async def warm(self) -> int:
        """Load valid durable entries into the in-process tier.

        Corrupt durable records are deleted on the way.

        Returns:
            Number of entries loaded.
        """
        if not (self._memory_enabled and self._durable_enabled):
            return 0

        now = self._clock()
        loaded = 0
        for key in await self._list_durable_keys():
            entry = await self._read_durable(key)
            if entry is None or not entry.is_valid(now):
                continue
            with self._lock:
                if key not in self._memory:
                    self._memory[key] = entry
                    loaded += 1

        with self._lock:
            self._enforce_capacity_locked()
        logger.info("cache.warmed", extra={"loaded": loaded, "size": len(self._memory)})
        return loaded

    def start_cleanup(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        self._cleanup_task.start()

    async def stop_cleanup(self) -> None:
        await self._cleanup_task.stop()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enforce_capacity_locked(self) -> None:
        overflow = len(self._memory) - self._config.max_size
        if overflow <= 0:
            return

        ranked = sorted(
            self._memory.items(),
            key=lambda item: (item[1].hit_count, item[1].created_at),
        )
        for key, entry in ranked[:overflow]:
            del self._memory[key]
            self._evictions += 1
            logger.debug("cache.evict", extra={"cache_key": key, "hit_count": entry.hit_count})

    def _encode(self, entry: CacheEntry) -> str:
        payload = json.dumps(entry.to_record(), separators=(",", ":"))
        if not self._config.compression_enabled:
            return payload
        compressed = zlib.compress(payload.encode("utf-8"))
        return _COMPRESSED_MARKER + base64.b64encode(compressed).decode("ascii")

    @staticmethod
    def _decode(raw: str) -> CacheEntry:
        # Records are decoded by shape so toggling compression keeps old entries readable.
        if raw.startswith(_COMPRESSED_MARKER):
            raw = zlib.decompress(base64.b64decode(raw[len(_COMPRESSED_MARKER):])).decode("utf-8")
        return CacheEntry.from_record(json.loads(raw))

    async def _read_durable(self, key: str) -> CacheEntry | None:
        """Read and decode one durable record; corrupt records are deleted."""
        try:
            raw = await self._store.get(key)
        except Exception as exc:
            logger.warning(
                "cache.durable_read_failed",
                extra={"cache_key": key, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return None
        if raw is None:
            return None

        # Any decode failure, including out-of-range numbers, marks the record corrupt.
        try:
            return self._decode(raw)
        except Exception as exc:
            logger.warning(
                "cache.durable_record_corrupt",
                extra={"cache_key": key, "error_type": type(exc).__name__},
            )
            await self._delete_durable(key)
            return None

    async def _delete_durable(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except Exception as exc:
            logger.warning(
                "cache.durable_delete_failed",
                extra={"cache_key": key, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )

    async def _list_durable_keys(self) -> list[str]:
        try:
            return await self._store.keys(self._config.key_prefix)
        except Exception as exc:
            logger.warning(
                "cache.durable_list_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return []

    async def _sweep_durable(self) -> int:
        """Delete expired and corrupt durable records; returns how many were removed."""
        now = self._clock()
        removed = 0
        for key in await self._list_durable_keys():
            try:
                raw = await self._store.get(key)
            except Exception as exc:
                logger.warning(
                    "cache.durable_read_failed",
                    extra={"cache_key": key, "error_type": type(exc).__name__, "error_msg": str(exc)},
                )
                continue
            if raw is None:
                continue
            try:
                valid = self._decode(raw).is_valid(now)
            except Exception:
                valid = False
            if not valid:
                await self._delete_durable(key)
                removed += 1
        return removed


def create_response_cache(
    store: AbstractKeyValueStore | None = None,
    *,
    preset: str | None = None,
    clock: Callable[[], float] = time.time,
    **overrides: Any,
) -> AIResponseCache:
    """Create a cache from a named preset plus explicit overrides.

    Raises:
        ValueError: If the preset name is unknown.
    """
    config = CacheConfig()
    if preset is not None:
        if preset not in CACHE_PRESETS:
            raise ValueError(f"Unknown cache preset: '{preset}'. Available: {', '.join(CACHE_PRESETS)}")
        config = replace(config, **CACHE_PRESETS[preset])
    if overrides:
        config = replace(config, **overrides)
    return AIResponseCache(store, config, clock=clock)
