"""
PromotionService — the operations the promotion pipeline exposes to callers.
Wires the registry, validation engine, orchestrator, scheduler and audit log together
and adds the tenant-scoped read paths (status polling, history, audit).
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.audit.audit_log import AuditLog
from storefront.config.settings import Settings, settings as default_settings
from storefront.db.audit_repository import AuditRepository
from storefront.db.deployment_repository import DeploymentRepository
from storefront.db.environment_repository import EnvironmentRepository
from storefront.db.product_repository import ProductRepository
from storefront.environments.environment_registry import EnvironmentRegistry
from storefront.observability.events import EventBus, create_default_event_bus
from storefront.promotions.errors import PromotionError
from storefront.promotions.models import (
    AuditLogEntry, DeploymentRecord, Environment, EnvironmentConfig,
    NotificationPreferences, ValidationResult,
)
from storefront.promotions.orchestrator import PromotionOrchestrator
from storefront.promotions.scheduler import DeploymentScheduler
from storefront.promotions.validation import ValidationEngine
from storefront.providers.stripe_client import PaymentProviderClient, ProviderClientFactory

logger = logging.getLogger(__name__)


class PromotionService:

    def __init__(
        self,
        registry: EnvironmentRegistry,
        validator: ValidationEngine,
        orchestrator: PromotionOrchestrator,
        scheduler: DeploymentScheduler,
        deployments: DeploymentRepository,
        audit_log: AuditLog,
        events: EventBus,
    ):
        self.registry = registry
        self.validator = validator
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.deployments = deployments
        self.audit_log = audit_log
        self.events = events

    # ── Promotion ─────────────────────────────────────────────────

    async def validate(self, tenant_id: str, product_id: str) -> List[ValidationResult]:
        return await self.validator.validate(tenant_id, product_id)

    async def deploy_now(self, tenant_id: str, product_id: str, actor: str) -> DeploymentRecord:
        return await self.orchestrator.deploy_now(tenant_id, product_id, actor)

    async def bulk_deploy(self, tenant_id: str, product_ids: List[str], actor: str) -> Dict[str, Any]:
        """Deploy products one after another; one product failing does not stop the rest."""
        deployments, errors = [], []
        for product_id in product_ids:
            try:
                deployments.append(await self.orchestrator.deploy_now(tenant_id, product_id, actor))
            except PromotionError as e:
                errors.append({"product_id": product_id, "error": str(e)})
        logger.info(f"Bulk deploy for tenant {tenant_id}: {len(deployments)} succeeded, {len(errors)} failed")
        return {
            "deployments": deployments,
            "errors": errors,
            "summary": {"total": len(product_ids), "successful": len(deployments), "failed": len(errors)},
        }

    # ── Scheduling ────────────────────────────────────────────────

    async def schedule(self, tenant_id: str, product_id: str, when_utc: datetime,
                       timezone: str = "UTC", actor: str = "system",
                       notification_preferences: Optional[NotificationPreferences] = None) -> DeploymentRecord:
        return await self.scheduler.schedule(
            tenant_id, product_id, when_utc, timezone=timezone, actor=actor,
            notification_preferences=notification_preferences,
        )

    async def cancel_scheduled(self, tenant_id: str, deployment_id: str, actor: str) -> DeploymentRecord:
        return await self.scheduler.cancel(tenant_id, deployment_id, actor)

    async def trigger(self, deployment_id: str, tenant_id: Optional[str] = None) -> DeploymentRecord:
        return await self.scheduler.trigger(deployment_id, tenant_id=tenant_id)

    async def list_scheduled(self, tenant_id: str, limit: int = 50) -> List[DeploymentRecord]:
        return await self.scheduler.list_scheduled(tenant_id, limit=limit)

    # ── Status & history ──────────────────────────────────────────

    async def get_status(self, tenant_id: str, deployment_id: str) -> Optional[DeploymentRecord]:
        """Current state of one deployment, for polling. None if the tenant has no such record."""
        return await self.deployments.get(deployment_id, tenant_id=tenant_id)

    async def list_history(self, tenant_id: str, product_id: str, limit: int = 100) -> List[DeploymentRecord]:
        return await self.deployments.list_by_product(tenant_id, product_id, limit=limit)

    # ── Environments ──────────────────────────────────────────────

    async def switch_active_environment(self, tenant_id: str, environment: Environment,
                                        actor: str) -> Environment:
        return await self.registry.switch_active_environment(tenant_id, environment, actor)

    async def get_active_environment(self, tenant_id: str) -> Environment:
        return await self.registry.get_active_environment(tenant_id)

    async def get_environment_overview(self, tenant_id: str) -> Dict[str, Any]:
        return await self.registry.get_overview(tenant_id)

    async def upsert_environment_config(self, tenant_id: str, environment: Environment,
                                        actor: str = "system", **fields) -> EnvironmentConfig:
        return await self.registry.upsert_config(tenant_id, environment, actor=actor, **fields)

    async def deactivate_environment_config(self, tenant_id: str, environment: Environment,
                                            actor: str = "system") -> Optional[EnvironmentConfig]:
        return await self.registry.deactivate_config(tenant_id, environment, actor=actor)

    # ── Audit ─────────────────────────────────────────────────────

    async def list_audit_log(self, tenant_id: str, environment: Optional[Environment] = None,
                             operation: Optional[str] = None, entity_id: Optional[str] = None,
                             limit: int = 100) -> List[AuditLogEntry]:
        return await self.audit_log.list_entries(
            tenant_id, environment=environment, operation=operation, entity_id=entity_id, limit=limit,
        )


def build_promotion_service(
    session_factory: async_sessionmaker,
    settings: Optional[Settings] = None,
    client_builder: Optional[Callable[..., PaymentProviderClient]] = None,
    events: Optional[EventBus] = None,
) -> PromotionService:
    """Assemble the pipeline over one session factory.

    `client_builder` replaces StripeEnvironmentClient as the per-environment client class.
    """
    settings = settings or default_settings
    events = events or create_default_event_bus()

    products = ProductRepository(session_factory)
    deployments = DeploymentRepository(session_factory)
    audit_log = AuditLog(AuditRepository(session_factory))
    registry = EnvironmentRegistry(EnvironmentRepository(session_factory), audit_log, events)
    client_factory = ProviderClientFactory(registry, settings, client_builder=client_builder)

    validator = ValidationEngine(products, deployments, registry, client_factory)
    orchestrator = PromotionOrchestrator(
        products, deployments, validator, client_factory, audit_log, events,
        single_flight=settings.deployment_single_flight,
    )
    scheduler = DeploymentScheduler(
        products, deployments, validator, orchestrator, audit_log, events,
        poll_seconds=settings.scheduler_poll_seconds, batch_size=settings.scheduler_batch_size,
    )
    return PromotionService(registry, validator, orchestrator, scheduler, deployments, audit_log, events)
