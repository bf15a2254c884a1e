"""
Storefront Promotions — environment and deployment API routes.
Environment switching and bindings, product validation, immediate/bulk/scheduled
deployment, status polling, cancellation, manual trigger and the audit trail.
"""

import logging
from datetime import datetime
from typing import Optional, List

from fastapi import Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from storefront.promotions.errors import (
    DeploymentConflict, DeploymentNotFound, EnvironmentNotConfigured, InvalidDeploymentState,
    InvalidSchedule, NotAuthenticated, PersistenceError, ProductNotFound, PromotionError,
    ProviderError, ValidationFailed,
)
from storefront.promotions.models import Environment, NotificationPreferences, has_failures
from storefront.promotions.service import PromotionService

logger = logging.getLogger(__name__)


# ── Request Models ────────────────────────────────────────────────

class SwitchEnvironmentRequest(BaseModel):
    environment: Environment


class EnvironmentConfigRequest(BaseModel):
    account_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    publishable_key: Optional[str] = None
    is_active: Optional[bool] = None


class BulkDeployRequest(BaseModel):
    product_ids: List[str] = Field(min_length=1)


class ScheduleDeploymentRequest(BaseModel):
    scheduled_for: datetime
    timezone: str = "UTC"
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)


# ── Helpers ──────────────────────────────────────────────────────

def _service(request: Request) -> PromotionService:
    return request.app.state.promotion_service


def _actor(request: Request, x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id")) -> str:
    """Caller identity for mutating routes. Anonymous callers are only allowed in dev."""
    if x_actor_id:
        return x_actor_id
    if request.app.state.settings.is_dev:
        return "dev-user"
    raise _to_http(NotAuthenticated("X-Actor-Id header is required"))


def _to_http(e: PromotionError) -> HTTPException:
    if isinstance(e, NotAuthenticated):
        return HTTPException(401, str(e))
    if isinstance(e, (ProductNotFound, DeploymentNotFound)):
        return HTTPException(404, str(e))
    if isinstance(e, (InvalidDeploymentState, DeploymentConflict)):
        return HTTPException(409, str(e))
    if isinstance(e, ValidationFailed):
        return HTTPException(422, {
            "message": str(e),
            "validation_results": [r.model_dump(mode="json") for r in e.results],
        })
    if isinstance(e, (InvalidSchedule, EnvironmentNotConfigured)):
        return HTTPException(422, str(e))
    if isinstance(e, ProviderError):
        return HTTPException(502, str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(503, str(e))
    return HTTPException(400, str(e))


# ── Route Registration ───────────────────────────────────────────

def register_promotion_routes(app_router):
    """Register promotion pipeline routes onto the FastAPI app."""

    # ══════════════════════════════════════════════════════════════
    # ENVIRONMENTS
    # ══════════════════════════════════════════════════════════════

    @app_router.get("/environment", tags=["Environments"])
    async def get_environment(request: Request, tenant_id: Optional[str] = Query(default=None)):
        """Active environment and a summary of both environment bindings."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            return await _service(request).get_environment_overview(tenant_id)
        except PromotionError as e:
            raise _to_http(e)

    @app_router.post("/environment", tags=["Environments"])
    async def switch_environment(req: SwitchEnvironmentRequest, request: Request,
                                 tenant_id: Optional[str] = Query(default=None),
                                 actor: str = Depends(_actor)):
        """Switch the tenant's active environment. Deployments are not affected."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            previous = await _service(request).switch_active_environment(tenant_id, req.environment, actor)
        except PromotionError as e:
            raise _to_http(e)
        return {
            "environment": req.environment.value,
            "previous_environment": previous.value,
            "message": f"Switched to {req.environment.value} environment",
        }

    @app_router.put("/environments/{environment}", tags=["Environments"])
    async def upsert_environment_config(environment: Environment, req: EnvironmentConfigRequest,
                                        request: Request, tenant_id: Optional[str] = Query(default=None),
                                        actor: str = Depends(_actor)):
        """Connect or update an environment binding. Only the supplied fields change."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        fields = req.model_dump(exclude_unset=True)
        try:
            cfg = await _service(request).upsert_environment_config(tenant_id, environment, actor=actor, **fields)
        except PromotionError as e:
            raise _to_http(e)
        return cfg.public_view()

    @app_router.delete("/environments/{environment}", tags=["Environments"])
    async def deactivate_environment_config(environment: Environment, request: Request,
                                            tenant_id: Optional[str] = Query(default=None),
                                            actor: str = Depends(_actor)):
        """Deactivate an environment binding. The record is kept."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            cfg = await _service(request).deactivate_environment_config(tenant_id, environment, actor=actor)
        except PromotionError as e:
            raise _to_http(e)
        if cfg is None:
            raise HTTPException(404, f"The {environment.value} environment is not configured")
        return cfg.public_view()

    # ══════════════════════════════════════════════════════════════
    # PRODUCT DEPLOYMENT
    # ══════════════════════════════════════════════════════════════

    @app_router.post("/products/deploy/bulk", tags=["Deployments"])
    async def bulk_deploy(req: BulkDeployRequest, request: Request,
                          tenant_id: Optional[str] = Query(default=None),
                          actor: str = Depends(_actor)):
        """Deploy several products sequentially. Per-product failures are reported, not raised."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            result = await _service(request).bulk_deploy(tenant_id, req.product_ids, actor)
        except PromotionError as e:
            raise _to_http(e)
        return {
            "deployments": [d.model_dump(mode="json") for d in result["deployments"]],
            "errors": result["errors"],
            "summary": result["summary"],
        }

    @app_router.post("/products/{product_id}/validate", tags=["Deployments"])
    async def validate_product(product_id: str, request: Request,
                               tenant_id: Optional[str] = Query(default=None)):
        """Readiness report. Failing checks are part of the report, never an error status."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        results = await _service(request).validate(tenant_id, product_id)
        return {
            "product_id": product_id,
            "can_deploy": not has_failures(results),
            "validation_results": [r.model_dump(mode="json") for r in results],
        }

    @app_router.post("/products/{product_id}/deploy", tags=["Deployments"])
    async def deploy_product(product_id: str, request: Request,
                             tenant_id: Optional[str] = Query(default=None),
                             actor: str = Depends(_actor)):
        """Promote a product to production now."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            record = await _service(request).deploy_now(tenant_id, product_id, actor)
        except PromotionError as e:
            raise _to_http(e)
        return record.model_dump(mode="json")

    @app_router.post("/products/{product_id}/schedule", tags=["Deployments"])
    async def schedule_product(product_id: str, req: ScheduleDeploymentRequest, request: Request,
                               tenant_id: Optional[str] = Query(default=None),
                               actor: str = Depends(_actor)):
        """Validate now and deploy at `scheduled_for`."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            record = await _service(request).schedule(
                tenant_id, product_id, req.scheduled_for, timezone=req.timezone,
                actor=actor, notification_preferences=req.notification_preferences,
            )
        except PromotionError as e:
            raise _to_http(e)
        return record.model_dump(mode="json")

    @app_router.get("/products/{product_id}/deployments", tags=["Deployments"])
    async def deployment_history(product_id: str, request: Request,
                                 tenant_id: Optional[str] = Query(default=None),
                                 limit: int = Query(default=100, ge=1, le=500)):
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            records = await _service(request).list_history(tenant_id, product_id, limit=limit)
        except PromotionError as e:
            raise _to_http(e)
        return {"count": len(records), "deployments": [r.model_dump(mode="json") for r in records]}

    # ══════════════════════════════════════════════════════════════
    # DEPLOYMENTS
    # ══════════════════════════════════════════════════════════════

    # /deployments/scheduled must be registered before /deployments/{deployment_id}
    @app_router.get("/deployments/scheduled", tags=["Deployments"])
    async def list_scheduled(request: Request, tenant_id: Optional[str] = Query(default=None),
                             limit: int = Query(default=50, ge=1, le=500)):
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            records = await _service(request).list_scheduled(tenant_id, limit=limit)
        except PromotionError as e:
            raise _to_http(e)
        return {"count": len(records), "deployments": [r.model_dump(mode="json") for r in records]}

    @app_router.get("/deployments/{deployment_id}", tags=["Deployments"])
    async def deployment_status(deployment_id: str, request: Request,
                                tenant_id: Optional[str] = Query(default=None)):
        """Poll a deployment's status and progress."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            record = await _service(request).get_status(tenant_id, deployment_id)
        except PromotionError as e:
            raise _to_http(e)
        if record is None:
            raise HTTPException(404, f"Deployment {deployment_id} not found")
        return record.model_dump(mode="json")

    @app_router.post("/deployments/{deployment_id}/cancel", tags=["Deployments"])
    async def cancel_deployment(deployment_id: str, request: Request,
                                tenant_id: Optional[str] = Query(default=None),
                                actor: str = Depends(_actor)):
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            record = await _service(request).cancel_scheduled(tenant_id, deployment_id, actor)
        except PromotionError as e:
            raise _to_http(e)
        return {"message": "Deployment cancelled successfully", "deployment": record.model_dump(mode="json")}

    @app_router.post("/deployments/{deployment_id}/trigger", tags=["Deployments"])
    async def trigger_deployment(deployment_id: str, request: Request,
                                 tenant_id: Optional[str] = Query(default=None),
                                 actor: str = Depends(_actor)):
        """Run a scheduled deployment now instead of waiting for its time."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        logger.info(f"Manual trigger of {deployment_id} by {actor}")
        try:
            record = await _service(request).trigger(deployment_id, tenant_id=tenant_id)
        except PromotionError as e:
            raise _to_http(e)
        return record.model_dump(mode="json")

    # ══════════════════════════════════════════════════════════════
    # AUDIT
    # ══════════════════════════════════════════════════════════════

    @app_router.get("/audit", tags=["Audit"])
    async def audit_log(request: Request, tenant_id: Optional[str] = Query(default=None),
                        environment: Optional[Environment] = Query(default=None),
                        operation: Optional[str] = Query(default=None),
                        entity_id: Optional[str] = Query(default=None),
                        limit: int = Query(default=100, ge=1, le=1000)):
        """Newest-first audit entries for the tenant."""
        tenant_id = tenant_id or request.app.state.settings.default_tenant_id
        try:
            entries = await _service(request).list_audit_log(
                tenant_id, environment=environment, operation=operation, entity_id=entity_id, limit=limit,
            )
        except PromotionError as e:
            raise _to_http(e)
        return {"count": len(entries), "entries": [entry.model_dump(mode="json") for entry in entries]}
