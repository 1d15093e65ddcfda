"""Governance service composing the response cache and the rate limiter.

This service wraps any asynchronous generation function so that:
- Callers over their quota (or a saturated service) are refused before the
  provider is contacted
- Deterministic requests are memoized and served without a provider call
- Successful provider calls are recorded against the caller's usage

The two wrappers ``cached_generate`` and ``rate_limited_generate`` are usable
on their own; ``GovernanceService`` composes them with a single check/record
pair around each provider call.
"""

from __future__ import annotations

import logging

from ai_governance.adapters.rate_limit.base import AbstractRateLimiter, IdentityClass
from ai_governance.core.errors import RateLimitExceededError
from ai_governance.core.logging import hash_for_log
from ai_governance.schemas.generation import GenerateFn, GenerationRequest, GenerationResponse
from ai_governance.utils.response_cache import AIResponseCache

logger = logging.getLogger(__name__)

# Responses shorter than this are not worth memoizing
DEFAULT_CACHEABLE_THRESHOLD = 50
# Above this temperature outputs are intentionally varied
DEFAULT_MAX_CACHEABLE_TEMPERATURE = 0.9


def is_cache_worthy(
    request: GenerationRequest,
    *,
    skip_cache: bool = False,
    max_cacheable_temperature: float = DEFAULT_MAX_CACHEABLE_TEMPERATURE,
) -> bool:
    """Decide whether the cache may be consulted for a request.

    Requests without an explicit temperature are treated as non-deterministic.

    Args:
        request: Incoming generation request.
        skip_cache: Caller opt-out.
        max_cacheable_temperature: Highest temperature still considered deterministic.

    Returns:
        True if the cache should be consulted (and possibly filled).
    """
    if skip_cache or request.temperature is None:
        return False
    return request.temperature <= max_cacheable_temperature


async def cached_generate(
    cache: AIResponseCache,
    generate_fn: GenerateFn,
    request: GenerationRequest,
    *,
    skip_cache: bool = False,
    ttl_seconds: float | None = None,
    cacheable_threshold: int = DEFAULT_CACHEABLE_THRESHOLD,
    max_cacheable_temperature: float = DEFAULT_MAX_CACHEABLE_TEMPERATURE,
) -> GenerationResponse:
    """Serve a request from the cache, generating and memoizing on a miss.

    Args:
        cache: Response cache.
        generate_fn: Provider call.
        request: Generation request.
        skip_cache: Bypass the cache in both directions.
        ttl_seconds: Lifetime override for a newly cached response.
        cacheable_threshold: Minimum response length that gets cached.
        max_cacheable_temperature: Highest temperature that gets cached.

    Returns:
        Cached or freshly generated response.
    """
    if not is_cache_worthy(request, skip_cache=skip_cache, max_cacheable_temperature=max_cacheable_temperature):
        return await generate_fn(request)

    cached = await cache.get(request)
    if cached is not None:
        return cached

    response = await generate_fn(request)
    if len(response.text) >= cacheable_threshold:
        await cache.set(request, response, ttl_seconds)
    return response


def _check_or_raise(
    limiter: AbstractRateLimiter,
    identity: str,
    identity_class: IdentityClass | str | None,
    estimated_tokens: int,
) -> None:
    result = limiter.check_rate_limit(identity, identity_class, estimated_tokens)
    if not result.allowed:
        raise RateLimitExceededError.from_result(result)


async def rate_limited_generate(
    limiter: AbstractRateLimiter,
    generate_fn: GenerateFn,
    request: GenerationRequest,
    identity: str,
    identity_class: IdentityClass | str | None = None,
    estimated_tokens: int = 1000,
) -> GenerationResponse:
    """Run a provider call behind the rate limiter.

    Usage is recorded only after the provider call succeeded, using the
    reported token count when available and the estimate otherwise.

    Raises:
        RateLimitExceededError: If the limiter refuses the request.
    """
    _check_or_raise(limiter, identity, identity_class, estimated_tokens)
    response = await generate_fn(request)
    limiter.record_request(identity, _tokens_for(response, estimated_tokens), identity_class)
    return response


def _tokens_for(response: GenerationResponse, estimated_tokens: int) -> int:
    return estimated_tokens if response.tokens_used is None else response.tokens_used


class GovernanceService:
    """Admission control and memoization for provider calls.

    Attributes:
        cache: Two-tier response cache.
        rate_limiter: Sliding-window limiter.
    """

    def __init__(
        self,
        cache: AIResponseCache,
        rate_limiter: AbstractRateLimiter,
        *,
        cacheable_threshold: int = DEFAULT_CACHEABLE_THRESHOLD,
        max_cacheable_temperature: float = DEFAULT_MAX_CACHEABLE_TEMPERATURE,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.cacheable_threshold = cacheable_threshold
        self.max_cacheable_temperature = max_cacheable_temperature

    async def generate(
        self,
        generate_fn: GenerateFn,
        request: GenerationRequest,
        identity: str,
        identity_class: IdentityClass | str | None = None,
        *,
        estimated_tokens: int = 1000,
        skip_cache: bool = False,
        ttl_seconds: float | None = None,
    ) -> GenerationResponse:
        """Check the limit, serve from cache or generate, then record usage.

        Cache hits are not recorded as usage.

        Args:
            generate_fn: Provider call.
            request: Generation request.
            identity: Caller identity for rate limiting.
            identity_class: Class selecting the caller's rule-set.
            estimated_tokens: Expected token usage.
            skip_cache: Bypass the cache.
            ttl_seconds: Lifetime override for a newly cached response.

        Returns:
            Cached or freshly generated response.

        Raises:
            RateLimitExceededError: If the limiter refuses the request.
        """
        # Step 1: Admission
        _check_or_raise(self.rate_limiter, identity, identity_class, estimated_tokens)

        # Step 2: Cache lookup
        cache_worthy = is_cache_worthy(
            request,
            skip_cache=skip_cache,
            max_cacheable_temperature=self.max_cacheable_temperature,
        )
        if cache_worthy:
            cached = await self.cache.get(request)
            if cached is not None:
                logger.info(
                    "governance.cache_hit",
                    extra={"identity_hash": hash_for_log(identity)},
                )
                return cached

        # Step 3: Generate and record
        response = await generate_fn(request)
        self.rate_limiter.record_request(identity, _tokens_for(response, estimated_tokens), identity_class)

        # Step 4: Memoize
        if cache_worthy and len(response.text) >= self.cacheable_threshold:
            await self.cache.set(request, response, ttl_seconds)

        return response

    async def start(self, *, warm_cache: bool = False) -> None:
        """Start background housekeeping; must run inside an event loop."""
        if warm_cache:
            await self.cache.warm()
        self.cache.start_cleanup()
        start_cleanup = getattr(self.rate_limiter, "start_cleanup", None)
        if start_cleanup is not None:
            start_cleanup()
        logger.info("governance.started", extra={"warm_cache": warm_cache})

    async def shutdown(self) -> None:
        await self.cache.stop_cleanup()
        stop_cleanup = getattr(self.rate_limiter, "stop_cleanup", None)
        if stop_cleanup is not None:
            await stop_cleanup()
        logger.info("governance.stopped")
