"""Pydantic schemas for the governance HTTP surface."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ai_governance.adapters.rate_limit.base import RateLimitResult, UsageMetrics
from ai_governance.utils.response_cache import CacheStats


class RateLimitCheckRequest(BaseModel):
    """Admission check for an upcoming provider call."""

    estimated_tokens: int = Field(
        1000,
        ge=0,
        description="Tokens the upcoming request is expected to use (priced against the cost ceilings).",
    )


class RateLimitCheckResponse(BaseModel):
    """Outcome of an admitted check. Refusals are returned as 429/503 errors."""

    allowed: bool
    identity_class: str = Field(..., description="Class whose rule-set was applied.")
    remaining_requests: int | None = Field(
        None,
        description="Slack left under the tightest rule (null when unlimited).",
    )
    reset_time: float = Field(..., description="UNIX epoch seconds when the binding window frees capacity.")

    @classmethod
    def from_result(cls, result: RateLimitResult, identity_class: str) -> RateLimitCheckResponse:
        return cls(
            allowed=result.allowed,
            identity_class=identity_class,
            remaining_requests=result.remaining_requests,
            reset_time=result.reset_time,
        )


class UsageRecordRequest(BaseModel):
    """Usage of a provider call that completed successfully."""

    tokens: int = Field(..., ge=0, description="Tokens actually used by the provider call.")


class WindowUsageModel(BaseModel):
    requests: int
    tokens: int
    estimated_cost: float


class UsageMetricsResponse(BaseModel):
    """Usage over the trailing windows (totals cover the trailing day)."""

    identity: str | None = Field(None, description="Identity reported on; null for global usage.")
    total_requests: int
    total_tokens: int
    estimated_cost: float
    current_window_usage: dict[str, WindowUsageModel]

    @classmethod
    def from_metrics(cls, metrics: UsageMetrics, identity: str | None = None) -> UsageMetricsResponse:
        return cls(
            identity=identity,
            total_requests=metrics.total_requests,
            total_tokens=metrics.total_tokens,
            estimated_cost=metrics.estimated_cost,
            current_window_usage={
                window.value: WindowUsageModel(
                    requests=usage.requests,
                    tokens=usage.tokens,
                    estimated_cost=usage.estimated_cost,
                )
                for window, usage in metrics.current_window_usage.items()
            },
        )


class EmergencyBrakeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    max_hourly_cost: float | None = Field(None, ge=0.0)
    max_daily_cost: float | None = Field(None, ge=0.0)


class RateLimitConfigUpdate(BaseModel):
    """Partial limiter configuration; only fields that are set are applied."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    rules: dict[str, dict[str, int]] | None = Field(
        None,
        description="Rule-sets per identity class, e.g. {\"guest\": {\"minute\": 1}}.",
    )
    cost_per_token: float | None = Field(None, ge=0.0)
    emergency_brake: EmergencyBrakeUpdate | None = None
    adaptive_throttling: bool | None = None
    assumed_capacity_per_minute: int | None = Field(None, ge=1)
    load_threshold: float | None = Field(None, ge=0.0, le=1.0)
    throttle_multipliers: dict[str, float] | None = None
    default_identity_class: str | None = None

    def changes(self) -> dict[str, object]:
        """Return only the fields the client sent, with null values dropped."""
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        if "emergency_brake" in changes and not changes["emergency_brake"]:
            del changes["emergency_brake"]
        return changes


class RateLimitConfigUpdateResponse(BaseModel):
    updated_fields: list[str]


class CacheStatsResponse(BaseModel):
    """Cache metrics. Cached values are never exposed."""

    memory_size: int
    max_size: int
    default_ttl_seconds: float
    enable_memory_tier: bool
    enable_durable_tier: bool
    hits: int
    misses: int
    saves: int
    evictions: int
    hit_rate: float

    @classmethod
    def from_stats(cls, stats: CacheStats) -> CacheStatsResponse:
        return cls(
            memory_size=stats.memory_size,
            max_size=stats.config.max_size,
            default_ttl_seconds=stats.config.default_ttl_seconds,
            enable_memory_tier=stats.config.enable_memory_tier,
            enable_durable_tier=stats.config.enable_durable_tier,
            hits=stats.hits,
            misses=stats.misses,
            saves=stats.saves,
            evictions=stats.evictions,
            hit_rate=stats.hit_rate,
        )
