from __future__ import annotations

from admission.api.routes.admission import router as admission_router
from admission.api.routes.health import router as health_router
from admission.api.routes.policies import router as policies_router

__all__ = ["admission_router", "health_router", "policies_router"]
