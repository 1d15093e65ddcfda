"""Construction of governance components from settings.

Keeps the mapping between flat environment settings and the typed component
configs in one place, so the HTTP layer and embedding applications build the
same objects.
"""

from __future__ import annotations

import dataclasses

from fastapi import Request

from ai_governance.adapters.rate_limit.base import (
    EmergencyBrakeConfig,
    IdentityClass,
    RateLimiterConfig,
    parse_rule_sets,
)
from ai_governance.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.adapters.storage.factory import create_key_value_store
from ai_governance.core.config import CacheSettings, RateLimitSettings, Settings, settings
from ai_governance.services.governance_service import GovernanceService
from ai_governance.utils.response_cache import CACHE_PRESETS, AIResponseCache, CacheConfig


def build_cache_config(cache_settings: CacheSettings) -> CacheConfig:
    """Map cache settings onto a CacheConfig; a preset overrides size and TTL."""
    config = CacheConfig(
        max_size=cache_settings.max_size,
        default_ttl_seconds=cache_settings.default_ttl_seconds,
        enable_memory_tier=cache_settings.enable_memory_tier,
        enable_durable_tier=cache_settings.enable_durable_tier,
        compression_enabled=cache_settings.compression_enabled,
        key_prefix=cache_settings.key_prefix,
        cleanup_interval_seconds=cache_settings.cleanup_interval_seconds,
    )
    if cache_settings.preset:
        if cache_settings.preset not in CACHE_PRESETS:
            raise ValueError(f"Unknown cache preset: '{cache_settings.preset}'")
        config = dataclasses.replace(config, **CACHE_PRESETS[cache_settings.preset])
    return config


def build_rate_limiter_config(rate_limit_settings: RateLimitSettings) -> RateLimiterConfig:
    return RateLimiterConfig(
        enabled=rate_limit_settings.enabled,
        rules=parse_rule_sets(rate_limit_settings.rules),
        cost_per_token=rate_limit_settings.cost_per_token,
        emergency_brake=EmergencyBrakeConfig(
            enabled=rate_limit_settings.emergency_brake_enabled,
            max_hourly_cost=rate_limit_settings.max_hourly_cost,
            max_daily_cost=rate_limit_settings.max_daily_cost,
        ),
        adaptive_throttling=rate_limit_settings.adaptive_throttling,
        assumed_capacity_per_minute=rate_limit_settings.assumed_capacity_per_minute,
        load_threshold=rate_limit_settings.load_threshold,
        default_identity_class=IdentityClass(rate_limit_settings.default_identity_class),
    )


def build_governance_service(
    cfg: Settings | None = None,
    store: AbstractKeyValueStore | None = None,
) -> GovernanceService:
    """Build a GovernanceService wired from settings.

    Args:
        cfg: Settings to use; defaults to global settings if omitted.
        store: Durable store; created from the storage settings if omitted.

    Returns:
        GovernanceService with an unstarted cache and limiter.
    """
    cfg = cfg or settings
    if store is None and cfg.cache.enable_durable_tier:
        store = create_key_value_store(cfg.storage)

    cache = AIResponseCache(store, build_cache_config(cfg.cache))
    limiter = InMemorySlidingWindowRateLimiter(
        build_rate_limiter_config(cfg.rate_limit),
        cleanup_interval_seconds=cfg.rate_limit.cleanup_interval_seconds,
    )
    return GovernanceService(
        cache,
        limiter,
        cacheable_threshold=cfg.cache.cacheable_threshold,
        max_cacheable_temperature=cfg.cache.max_cacheable_temperature,
    )


def get_governance_service(request: Request) -> GovernanceService:
    """FastAPI dependency returning the service built by the app lifespan."""
    return request.app.state.governance
