"""Rate limiting adapters.

The in-memory sliding-window limiter is the only backend today; callers
depend on ``AbstractRateLimiter`` so a shared-store limiter can replace it
without changing the service or API layer.
"""

from ai_governance.adapters.rate_limit.base import (
    AbstractRateLimiter,
    EmergencyBrakeConfig,
    IdentityClass,
    RateLimiterConfig,
    RateLimitResult,
    RateLimitRule,
    RejectionReason,
    UsageMetrics,
    WindowType,
)
from ai_governance.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "EmergencyBrakeConfig",
    "IdentityClass",
    "InMemorySlidingWindowRateLimiter",
    "RateLimitResult",
    "RateLimitRule",
    "RateLimiterConfig",
    "RejectionReason",
    "UsageMetrics",
    "WindowType",
]
