from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from ai_governance.core.auth import Caller, require_admin, resolve_caller
from ai_governance.core.components import get_governance_service
from ai_governance.core.rate_limit import check_caller, rate_limit_headers
from ai_governance.schemas.governance import (
    CacheStatsResponse,
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    RateLimitConfigUpdate,
    RateLimitConfigUpdateResponse,
    UsageMetricsResponse,
    UsageRecordRequest,
)
from ai_governance.services.governance_service import GovernanceService

router = APIRouter(prefix="/governance", tags=["Governance"])

ServiceDep = Annotated[GovernanceService, Depends(get_governance_service)]
CallerDep = Annotated[Caller, Depends(resolve_caller)]


@router.post("/check", response_model=RateLimitCheckResponse)
async def check_rate_limit(
    body: RateLimitCheckRequest,
    response: Response,
    caller: CallerDep,
    service: ServiceDep,
) -> RateLimitCheckResponse:
    """Ask whether the caller may make a provider call now.

    Does not consume quota; report the completed call to ``POST /usage``.

    Raises:
        RateLimitExceededError: 429 when over quota or throttled, 503 when a
            global cost ceiling is reached.
    """
    result = check_caller(service, caller, body.estimated_tokens)
    response.headers.update(rate_limit_headers(result))
    return RateLimitCheckResponse.from_result(result, caller.identity_class.value)


@router.post("/usage", status_code=status.HTTP_204_NO_CONTENT)
async def record_usage(body: UsageRecordRequest, caller: CallerDep, service: ServiceDep) -> Response:
    """Record a provider call that completed successfully."""
    service.rate_limiter.record_request(caller.identity, body.tokens, caller.identity_class)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/usage",
    response_model=UsageMetricsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_usage(
    service: ServiceDep,
    identity: Annotated[str | None, Query(description="Identity to report on; global usage when omitted.")] = None,
) -> UsageMetricsResponse:
    metrics = service.rate_limiter.get_usage_metrics(identity)
    return UsageMetricsResponse.from_metrics(metrics, identity)


@router.patch(
    "/rate-limit/config",
    response_model=RateLimitConfigUpdateResponse,
    dependencies=[Depends(require_admin)],
)
async def update_rate_limit_config(body: RateLimitConfigUpdate, service: ServiceDep) -> RateLimitConfigUpdateResponse:
    """Hot-swap limiter configuration fields.

    Raises:
        ValidationAppError: 400 when a value is invalid.
    """
    changes = body.changes()
    if changes:
        service.rate_limiter.update_config(**changes)
    return RateLimitConfigUpdateResponse(updated_fields=sorted(changes))


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_cache_stats(service: ServiceDep) -> CacheStatsResponse:
    return CacheStatsResponse.from_stats(service.cache.get_stats())


@router.post(
    "/cache/cleanup",
    response_model=CacheStatsResponse,
    dependencies=[Depends(require_admin)],
)
async def cleanup_cache(service: ServiceDep) -> CacheStatsResponse:
    """Remove expired entries from both cache tiers now."""
    await service.cache.cleanup()
    return CacheStatsResponse.from_stats(service.cache.get_stats())


@router.delete(
    "/cache",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
async def clear_cache(service: ServiceDep) -> Response:
    await service.cache.clear()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
