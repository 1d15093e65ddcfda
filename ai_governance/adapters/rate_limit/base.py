"""Rate limiter types and interfaces.

Callers should depend on this abstraction (not the concrete implementation)
so the storage backend can be swapped later with minimal changes.

Admission is split into two calls that are deliberately not atomic:
``check_rate_limit`` before the provider call and ``record_request`` after it
succeeds. Concurrent requests for one identity may all pass the check before
any of them is recorded, so the worst-case overshoot equals the number of
in-flight requests for that identity.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class WindowType(str, Enum):
    """Sliding window durations tracked per identity."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return WINDOW_SECONDS[self]


WINDOW_SECONDS: dict[WindowType, int] = {
    WindowType.MINUTE: 60,
    WindowType.HOUR: 60 * 60,
    WindowType.DAY: 24 * 60 * 60,
}


class IdentityClass(str, Enum):
    """Identity classes, each mapped to its own rule-set."""

    GUEST = "guest"
    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"


class RejectionReason(str, Enum):
    """Machine-readable reason attached to a rejected check."""

    HOURLY_COST = "hourly_cost_limit"
    DAILY_COST = "daily_cost_limit"
    WINDOW_QUOTA = "window_quota"
    ADAPTIVE_THROTTLE = "adaptive_throttle"

    @property
    def is_cost_ceiling(self) -> bool:
        return self in (RejectionReason.HOURLY_COST, RejectionReason.DAILY_COST)


@dataclass(frozen=True)
class RateLimitRule:
    """Maximum number of requests admitted within one sliding window."""

    window: WindowType
    max_requests: int

    def __post_init__(self) -> None:
        if self.max_requests < 0:
            raise ValueError("max_requests must be >= 0")


@dataclass(frozen=True)
class UsageEntry:
    """One successful provider request as seen by a usage log."""

    timestamp: float
    token_count: int
    estimated_cost: float


@dataclass(frozen=True)
class EmergencyBrakeConfig:
    """Global spend ceilings, enforced regardless of identity class."""

    enabled: bool = True
    max_hourly_cost: float = 10.0
    max_daily_cost: float = 50.0


def _default_rules() -> dict[IdentityClass, tuple[RateLimitRule, ...]]:
    return {
        IdentityClass.GUEST: (
            RateLimitRule(WindowType.MINUTE, 2),
            RateLimitRule(WindowType.HOUR, 10),
            RateLimitRule(WindowType.DAY, 25),
        ),
        IdentityClass.FREE: (
            RateLimitRule(WindowType.MINUTE, 5),
            RateLimitRule(WindowType.HOUR, 50),
            RateLimitRule(WindowType.DAY, 200),
        ),
        IdentityClass.PREMIUM: (
            RateLimitRule(WindowType.MINUTE, 15),
            RateLimitRule(WindowType.HOUR, 300),
            RateLimitRule(WindowType.DAY, 1000),
        ),
        IdentityClass.ADMIN: (
            RateLimitRule(WindowType.MINUTE, 30),
            RateLimitRule(WindowType.HOUR, 1000),
            RateLimitRule(WindowType.DAY, 5000),
        ),
    }


def _default_throttle_multipliers() -> dict[IdentityClass, float]:
    return {
        IdentityClass.PREMIUM: 0.7,
        IdentityClass.ADMIN: 0.7,
        IdentityClass.FREE: 0.5,
        IdentityClass.GUEST: 0.3,
    }


@dataclass(frozen=True)
class RateLimiterConfig:
    """Complete limiter configuration.

    Attributes:
        enabled: When False every check is admitted and nothing is recorded.
        rules: Rule-set per identity class.
        cost_per_token: Estimated provider cost of one token.
        emergency_brake: Global hourly/daily spend ceilings.
        adaptive_throttling: Tighten limits when aggregate load is high.
        assumed_capacity_per_minute: Global requests per minute counted as full load.
        load_threshold: Load above which throttle multipliers apply.
        throttle_multipliers: Effective-limit multiplier per identity class under load.
        default_identity_class: Class used for unknown classes or missing rule-sets.
    """

    enabled: bool = True
    rules: Mapping[IdentityClass, tuple[RateLimitRule, ...]] = field(default_factory=_default_rules)
    cost_per_token: float = 0.0002
    emergency_brake: EmergencyBrakeConfig = field(default_factory=EmergencyBrakeConfig)
    adaptive_throttling: bool = True
    assumed_capacity_per_minute: int = 100
    load_threshold: float = 0.8
    throttle_multipliers: Mapping[IdentityClass, float] = field(default_factory=_default_throttle_multipliers)
    default_identity_class: IdentityClass = IdentityClass.FREE

    def __post_init__(self) -> None:
        if self.assumed_capacity_per_minute < 1:
            raise ValueError("assumed_capacity_per_minute must be >= 1")
        if self.cost_per_token < 0:
            raise ValueError("cost_per_token must be >= 0")

    def rules_for(self, identity_class: IdentityClass) -> tuple[RateLimitRule, ...]:
        """Return the rule-set for a class, falling back to the default class."""
        if identity_class in self.rules:
            return self.rules[identity_class]
        return self.rules.get(self.default_identity_class, ())

    def multiplier_for(self, identity_class: IdentityClass) -> float:
        return self.throttle_multipliers.get(identity_class, min(self.throttle_multipliers.values(), default=1.0))


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        remaining_requests: Slack left under the tightest rule (None for unlimited).
        reset_time: UNIX epoch seconds when the binding window next frees capacity.
        retry_after: Seconds to wait before retrying when blocked.
        reason: Human-readable rejection reason.
        reason_code: Machine-readable rejection reason.
    """

    allowed: bool
    remaining_requests: int | None
    reset_time: float
    retry_after: float | None = None
    reason: str | None = None
    reason_code: RejectionReason | None = None


@dataclass(frozen=True)
class WindowUsage:
    """Aggregated usage inside one trailing window."""

    requests: int = 0
    tokens: int = 0
    estimated_cost: float = 0.0


@dataclass(frozen=True)
class UsageMetrics:
    """Usage totals for one identity or for the whole process.

    Totals cover the trailing day, the longest tracked window.
    """

    total_requests: int
    total_tokens: int
    estimated_cost: float
    current_window_usage: dict[WindowType, WindowUsage]


def parse_rule_sets(
    raw: Mapping[str | IdentityClass, Mapping[str | WindowType, int] | tuple[RateLimitRule, ...]],
) -> dict[IdentityClass, tuple[RateLimitRule, ...]]:
    """Convert ``{"guest": {"minute": 2, ...}}`` style mappings into typed rule-sets.

    Already-typed rule tuples are passed through unchanged.

    Raises:
        ValueError: On unknown identity classes, unknown windows or negative limits.
    """

    rule_sets: dict[IdentityClass, tuple[RateLimitRule, ...]] = {}
    for class_name, rules in raw.items():
        identity_class = IdentityClass(class_name)
        if isinstance(rules, Mapping):
            parsed = tuple(
                RateLimitRule(WindowType(window), int(max_requests))
                for window, max_requests in rules.items()
            )
        else:
            parsed = tuple(rules)
        rule_sets[identity_class] = parsed
    return rule_sets


def parse_throttle_multipliers(raw: Mapping[str | IdentityClass, float]) -> dict[IdentityClass, float]:
    multipliers = {IdentityClass(name): float(value) for name, value in raw.items()}
    for value in multipliers.values():
        if not 0.0 <= value <= 1.0:
            raise ValueError("throttle multipliers must be within [0, 1]")
    return multipliers


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check_rate_limit(
        self,
        identity: str,
        identity_class: IdentityClass | str | None = None,
        estimated_tokens: int = 1000,
    ) -> RateLimitResult:
        """Decide whether a request may proceed. Must not mutate usage state.

        Args:
            identity: Unique identifier (e.g., user id, API key hash, IP address).
            identity_class: Class selecting the rule-set.
            estimated_tokens: Tokens the upcoming request is expected to use.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def record_request(
        self,
        identity: str,
        tokens: int,
        identity_class: IdentityClass | str | None = None,
    ) -> None:
        """Record a successful provider request for an identity."""
        raise NotImplementedError

    @abstractmethod
    def get_usage_metrics(self, identity: str | None = None) -> UsageMetrics:
        """Aggregate usage for one identity, or globally when identity is None."""
        raise NotImplementedError

    @abstractmethod
    def update_config(self, **changes: object) -> None:
        """Hot-swap configuration fields."""
        raise NotImplementedError

    @abstractmethod
    def cleanup(self) -> None:
        """Purge usage entries that have left every window."""
        raise NotImplementedError
