"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file and os.getenv("TESTING", "false").lower() != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_RULE_SETS: dict[str, dict[str, int]] = {
    "guest": {"minute": 2, "hour": 10, "day": 25},
    "free": {"minute": 5, "hour": 50, "day": 200},
    "premium": {"minute": 15, "hour": 300, "day": 1000},
    "admin": {"minute": 30, "hour": 1000, "day": 5000},
}


class CacheSettings(BaseSettings):
    """Response cache configuration (both tiers)."""

    preset: str | None = Field(
        None,
        description="Named preset (personal, job_analysis, general, static) overriding size/TTL",
    )
    max_size: int = Field(
        100,
        description="Maximum number of entries held in the in-process tier",
        ge=1,
    )
    default_ttl_seconds: float = Field(
        30 * 60,
        description="Default time-to-live for cached responses",
        gt=0,
    )
    enable_memory_tier: bool = Field(True, description="Use the in-process tier")
    enable_durable_tier: bool = Field(True, description="Use the durable key-value tier")
    compression_enabled: bool = Field(
        True,
        description="Compress serialized entries before writing them to the durable tier",
    )
    key_prefix: str = Field("ai_cache_", description="Prefix for every cache key")
    cleanup_interval_seconds: float = Field(
        10 * 60,
        description="Interval between expired-entry sweeps",
        gt=0,
    )
    cacheable_threshold: int = Field(
        50,
        description="Minimum response length (characters) worth caching",
        ge=0,
    )
    max_cacheable_temperature: float = Field(
        0.9,
        description="Requests sampled above this temperature bypass the cache",
        ge=0.0,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class StorageSettings(BaseSettings):
    """Durable key-value store backing the second cache tier."""

    backend: str = Field(
        "memory",
        description="Store backend: memory or redis",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL (required for the redis backend)",
    )
    namespace: str = Field(
        "ai_governance:",
        description="Key namespace applied by the redis backend",
    )
    max_entries: int | None = Field(
        None,
        description="Capacity of the memory backend (None for unbounded)",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiter, cost ceilings and adaptive throttling."""

    enabled: bool = Field(True, description="Enable admission control")
    rules: dict[str, dict[str, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_RULE_SETS.items()},
        description="Rule-sets per identity class: {class: {window: max_requests}} (JSON)",
    )
    cost_per_token: float = Field(
        0.0002,
        description="Estimated provider cost per token",
        ge=0.0,
    )
    emergency_brake_enabled: bool = Field(True, description="Enforce global cost ceilings")
    max_hourly_cost: float = Field(10.0, description="Global spend ceiling per trailing hour", ge=0.0)
    max_daily_cost: float = Field(50.0, description="Global spend ceiling per trailing day", ge=0.0)
    adaptive_throttling: bool = Field(True, description="Tighten limits under aggregate load")
    assumed_capacity_per_minute: int = Field(
        100,
        description="Global requests per minute treated as full load",
        ge=1,
    )
    load_threshold: float = Field(
        0.8,
        description="System load above which throttle multipliers apply",
        ge=0.0,
        le=1.0,
    )
    default_identity_class: str = Field(
        "free",
        description="Identity class used when an unknown class is requested",
    )
    cleanup_interval_seconds: float = Field(
        10 * 60,
        description="Interval between usage-log sweeps",
        gt=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate log file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Header carrying the correlation id")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether admin routes require an API key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated key:class pairs, e.g. 'k1:premium,k2:admin'",
    )
    warm_cache_on_startup: bool = Field(
        False,
        description="Hydrate the in-process tier from the durable tier at startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


def _build_app_settings() -> AppSettings:
    return AppSettings()


def _build_cache_settings() -> CacheSettings:
    return CacheSettings()


def _build_storage_settings() -> StorageSettings:
    return StorageSettings()


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


def _build_log_settings() -> LogSettings:
    return LogSettings()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    cache: CacheSettings = Field(default_factory=_build_cache_settings)
    storage: StorageSettings = Field(default_factory=_build_storage_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Nested settings are created via default_factory so env loading works.
settings = Settings()
