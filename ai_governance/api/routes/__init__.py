from __future__ import annotations

from ai_governance.api.routes.governance import router as governance_router
from ai_governance.api.routes.health import router as health_router

__all__ = ["governance_router", "health_router"]
