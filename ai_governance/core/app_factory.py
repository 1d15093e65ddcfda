"""Application factory for the governance sidecar API.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the lifecycle of the governance components: the durable store is
connected and the cleanup tasks are started on startup, then stopped and
closed on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ai_governance.adapters.storage.base import AbstractKeyValueStore
from ai_governance.adapters.storage.factory import create_key_value_store
from ai_governance.adapters.storage.redis_store import RedisKeyValueStore
from ai_governance.api.routes import governance_router, health_router
from ai_governance.core.components import build_governance_service
from ai_governance.core.config import Settings, settings
from ai_governance.core.errors import StorageAppError
from ai_governance.core.exception_handlers import setup_exception_handlers
from ai_governance.core.logging import configure_logging
from ai_governance.core.middleware import request_id_middleware
from ai_governance.core.openapi import apply_openapi_customizations
from ai_governance.services.governance_service import GovernanceService

logger = logging.getLogger(__name__)


async def _open_store(cfg: Settings) -> AbstractKeyValueStore | None:
    """Create and connect the durable store; an unreachable store only disables Tier 2 reads."""
    if not cfg.cache.enable_durable_tier:
        return None

    store = create_key_value_store(cfg.storage)
    if isinstance(store, RedisKeyValueStore):
        try:
            await store.connect()
        except StorageAppError as exc:
            # Cache failures never block startup; the cache degrades to recompute.
            logger.warning("storage.unavailable_at_startup", extra={"error_code": exc.code})
    return store


def create_app(
    cfg: Settings | None = None,
    service: GovernanceService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cfg: Settings to build components from; defaults to global settings.
        service: Pre-built service (tests); built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = cfg or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store: AbstractKeyValueStore | None = None
        if service is None:
            store = await _open_store(cfg)
            app.state.governance = build_governance_service(cfg, store)
        else:
            app.state.governance = service

        await app.state.governance.start(warm_cache=cfg.app.warm_cache_on_startup)
        try:
            yield
        finally:
            await app.state.governance.shutdown()
            if store is not None:
                await store.close()

    app = FastAPI(
        title="AI Governance API",
        description=(
            "Admission control and response caching for generative-AI provider calls: "
            "sliding-window quotas per identity class, global cost ceilings, adaptive "
            "throttling under load and a two-tier response cache."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # OpenAPI customizations (security scheme, tags)
    apply_openapi_customizations(app)

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(governance_router, prefix="/v1")
    app.include_router(health_router)

    return app
