"""
Storefront Promotions — FastAPI Server
REST API for the environment promotion pipeline: environment bindings and switching,
product validation, immediate and scheduled deployment to production, and the audit trail.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.routes_promotions import register_promotion_routes
from storefront.config.settings import Settings, settings as default_settings
from storefront.db.engine import create_tables, dispose_engine, get_engine, get_session_factory
from storefront.promotions.errors import PersistenceError
from storefront.promotions.service import PromotionService, build_promotion_service

logger = logging.getLogger(__name__)


_openapi_tags = [
    {"name": "System", "description": "Health and readiness"},
    {"name": "Environments", "description": "Test/production bindings and the tenant's active environment"},
    {"name": "Deployments", "description": "Validate, deploy, schedule, cancel and poll product promotions"},
    {"name": "Audit", "description": "Append-only trail of environment-affecting operations"},
]


def _cors_origins(raw: str) -> list:
    return ["*"] if raw.strip() == "*" else [o.strip() for o in raw.split(",") if o.strip()]


def create_app(promotion_service: Optional[PromotionService] = None,
               app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. When no service is injected, one is assembled over the configured database."""
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing promotion pipeline...")
        owns_engine = app.state.promotion_service is None
        if owns_engine:
            if app_settings.is_dev:
                await create_tables(get_engine())
                logger.info("Database tables created (dev)")
            app.state.promotion_service = build_promotion_service(get_session_factory(), app_settings)

        scheduler = app.state.promotion_service.scheduler
        if app_settings.scheduler_enabled:
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            if owns_engine:
                await dispose_engine()
            logger.info("Promotion pipeline shut down")

    app = FastAPI(
        title="Storefront Promotions",
        description=(
            "## Environment Promotion Pipeline\n\n"
            "Promotes products validated in the test payment environment into production, "
            "immediately or on a schedule, with progress tracking and an audit trail.\n\n"
            "---\n"
        ),
        version="0.1.0",
        lifespan=lifespan,
        openapi_tags=_openapi_tags,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = app_settings
    app.state.promotion_service = promotion_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(app_settings.cors_allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ══════════════════════════════════════════════════════════════════════════
    # HEALTH
    # ══════════════════════════════════════════════════════════════════════════

    @app.get("/health", tags=["System"])
    async def health(request: Request):
        """Liveness plus a database probe."""
        checks = {}
        overall = "ok"
        service = request.app.state.promotion_service
        try:
            await service.deployments.ping()
            checks["database"] = {"status": "ok"}
        except PersistenceError as e:
            checks["database"] = {"status": "error", "error": str(e)[:200]}
            overall = "degraded"
        checks["scheduler"] = {"status": "running" if service.scheduler.running else "stopped"}
        return {"status": overall, "environment": app_settings.environment, "checks": checks}

    register_promotion_routes(app)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
