"""Rate limiting helpers for the HTTP layer.

This module wires the sliding-window limiter into FastAPI:
- Rate limit response headers derived from a RateLimitResult
- The admission check for a resolved HTTP caller

Identity and class resolution live in ``ai_governance.core.auth``; the limiter
instance is owned by the GovernanceService on ``app.state``.
"""

from __future__ import annotations

import logging
import math

from ai_governance.adapters.rate_limit.base import RateLimitResult
from ai_governance.core.auth import Caller
from ai_governance.core.config import settings
from ai_governance.core.errors import RateLimitExceededError
from ai_governance.core.logging import hash_for_log
from ai_governance.services.governance_service import GovernanceService

logger = logging.getLogger(__name__)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build ``Retry-After`` and ``X-RateLimit-*`` headers for a result.

    Returns an empty dict when headers are disabled. ``Retry-After`` is
    rounded up to whole seconds and omitted when no retry time exists.
    """

    if not settings.rate_limit.include_headers:
        return {}

    headers: dict[str, str] = {"X-RateLimit-Reset": str(math.ceil(result.reset_time))}
    if result.remaining_requests is not None:
        headers["X-RateLimit-Remaining"] = str(max(result.remaining_requests, 0))
    if result.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(result.retry_after))
    return headers


def check_caller(
    service: GovernanceService,
    caller: Caller,
    estimated_tokens: int,
) -> RateLimitResult:
    """Run the admission check for a resolved caller.

    Raises:
        RateLimitExceededError: If the caller is refused.
    """

    result = service.rate_limiter.check_rate_limit(caller.identity, caller.identity_class, estimated_tokens)
    if not result.allowed:
        raise RateLimitExceededError.from_result(result)

    logger.info(
        "rate_limit.allowed",
        extra={
            "identity_hash": hash_for_log(caller.identity),
            "identity_class": caller.identity_class.value,
            "remaining": result.remaining_requests,
        },
    )
    return result

