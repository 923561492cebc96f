from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (engine, lifespan, middleware, handlers,
routers, docs) so tests can build isolated instances.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission.api.routes import admission_router, health_router, policies_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware
from admission.core.openapi import apply_openapi_customizations
from admission.services.admission_engine import AdmissionEngine
from admission.services.factory import build_engine


def create_app(engine: AdmissionEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine: Engine to serve (built from settings when None).

    Returns:
        Configured FastAPI app; the engine is started and stopped with the
        app's lifespan and exposed as ``app.state.engine``.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Policy-driven rate limiting: per-key quotas scoped by user, IP, "
            "API key, endpoint, role or service, sliding or fixed windows, "
            "exemptions, configurable enforcement actions and a forward-auth "
            "check for reverse proxies. Admin routes require X-API-Key."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(policies_router, prefix="/v1")
    app.include_router(admission_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
