"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Two failure philosophies coexist:
- Storage errors are raised by store adapters but swallowed by the response
  cache, which degrades to "always recompute".
- Rate limit rejections are raised to the caller, which decides how to
  surface them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from ai_governance.adapters.rate_limit.base import RateLimitResult


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    reason: str
    reason_code: str
    retry_after: float
    reset_time: float
    remaining_requests: int
    backend: str
    key: str
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class StorageAppError(AppError):
    """Raised by durable key-value stores on read/write failures."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a request is refused by the rate limiter.

    Attributes:
        result: The rejected RateLimitResult, including retry metadata.
    """

    result: RateLimitResult | None = None

    @property
    def retry_after(self) -> float | None:
        return self.result.retry_after if self.result else None

    @property
    def reset_time(self) -> float | None:
        return self.result.reset_time if self.result else None

    @property
    def is_emergency_brake(self) -> bool:
        """True when a global cost ceiling (not the caller's quota) refused the request."""
        return bool(self.result and self.result.reason_code and self.result.reason_code.is_cost_ceiling)

    @classmethod
    def from_result(cls, result: RateLimitResult) -> RateLimitExceededError:
        """Build the error for a rejected result.

        Cost ceiling rejections and identity quota rejections get distinct
        codes and messages because callers remediate them differently
        (waiting vs. upgrading identity class).
        """

        details: ErrorDetails = {
            "reason": result.reason or "",
            "reset_time": result.reset_time,
        }
        if result.reason_code is not None:
            details["reason_code"] = result.reason_code.value
        if result.retry_after is not None:
            details["retry_after"] = result.retry_after

        if result.reason_code is not None and result.reason_code.is_cost_ceiling:
            return cls(
                code="service_saturated",
                message="Service temporarily saturated, try again later.",
                details=details,
                result=result,
            )

        reset_at = datetime.fromtimestamp(result.reset_time, tz=timezone.utc).isoformat()
        return cls(
            code="rate_limit_exceeded",
            message=f"You have hit your usage limit until {reset_at}.",
            details=details,
            result=result,
        )
