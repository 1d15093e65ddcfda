from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ai_governance.core.components import get_governance_service
from ai_governance.services.governance_service import GovernanceService

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(service: Annotated[GovernanceService, Depends(get_governance_service)]) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. Reports whether admission
    control is enabled and how many identities are currently tracked.

    Returns:
        dict: ``status`` plus a short governance summary.
    """

    limiter = service.rate_limiter
    return {
        "status": "ok",
        "rate_limit_enabled": limiter.config.enabled,
        "tracked_identities": limiter.tracked_identities(),
        "cache_size": service.cache.get_stats().memory_size,
    }
