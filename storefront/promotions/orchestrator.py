"""
Promotion Orchestrator — the deployment state machine.

    pending/scheduled → validating → deploying → completed
                                  ↘            ↘ failed

Progress is written to the store at fixed checkpoints (10/20/40/60/80/100) so a caller
polling the record sees monotonic progress. Any error while deploying marks the record
failed with the error text verbatim before the original exception reaches the caller.

A target product created before a later step fails is left in place. Its metadata
(tenant_id, source_product_id, deployment_id, deployed_at) traces it back to this record.
"""

import logging
import time
from typing import Optional, Dict, Any

from storefront.audit.audit_log import AuditLog, AuditOperation
from storefront.db.deployment_repository import DeploymentRepository
from storefront.db.product_repository import ProductRepository
from storefront.observability.events import EventBus, DeploymentEventType
from storefront.promotions.errors import (
    DeploymentConflict, ProductNotFound, ValidationFailed,
)
from storefront.promotions.models import (
    AuditStatus, CheckStatus, DeploymentRecord, DeploymentStatus, Environment,
    has_failures, utcnow,
)
from storefront.promotions.validation import ValidationCheck, ValidationEngine
from storefront.providers.stripe_client import ProviderClientFactory, to_minor_units

logger = logging.getLogger(__name__)


class PromotionOrchestrator:

    def __init__(
        self,
        products: ProductRepository,
        deployments: DeploymentRepository,
        validator: ValidationEngine,
        client_factory: ProviderClientFactory,
        audit_log: AuditLog,
        events: Optional[EventBus] = None,
        single_flight: bool = False,
    ):
        self._products = products
        self._deployments = deployments
        self._validator = validator
        self._clients = client_factory
        self._audit = audit_log
        self._events = events or EventBus()
        self.single_flight = single_flight

    # ── Entry points ──────────────────────────────────────────────

    async def deploy_now(self, tenant_id: str, product_id: str, actor: str) -> DeploymentRecord:
        """Create a pending record for the product and drive it to a terminal state.

        Raises ValidationFailed (record left `failed`) when any check fails, and re-raises
        provider/persistence errors after the record has been marked `failed`.
        """
        product = await self._products.get(tenant_id, product_id)
        record = DeploymentRecord(
            tenant_id=tenant_id,
            product_id=product_id,
            source_product_id=product.stripe_test_product_id if product else None,
            source_price_id=product.stripe_test_price_id if product else None,
            product_name=product.name if product else "",
            price=product.price if product else 0,
            currency=product.currency if product else "usd",
            deployed_by=actor,
            progress_message="Deployment requested",
        )
        await self._deployments.create(record)
        await self._events.emit(DeploymentEventType.CREATED, tenant_id, record.deployment_id,
                                data={"product_id": product_id, "actor": actor})
        await self._advance(record, DeploymentStatus.VALIDATING, 10, "Validating product for deployment...")
        return await self.execute(record)

    async def execute(self, record: DeploymentRecord) -> DeploymentRecord:
        """Validate and deploy a record already in `validating`.

        The scheduler calls this after it has claimed a scheduled record.
        """
        results = await self._validator.validate(
            record.tenant_id, record.product_id, exclude_deployment_id=record.deployment_id,
        )
        record.validation_results = results

        if has_failures(results):
            error = ValidationFailed(results)
            await self._fail(record, str(error), payload_extra={
                "failed_checks": [r.check for r in results if r.failed],
            })
            raise error

        if self.single_flight:
            concurrent = [r for r in results
                          if r.check == ValidationCheck.CONCURRENT_DEPLOYMENT and r.status == CheckStatus.WARNING]
            if concurrent:
                ids = (concurrent[0].details or {}).get("deployment_ids", [])
                error = DeploymentConflict(record.product_id, ids)
                await self._fail(record, str(error))
                raise error

        try:
            return await self._deploy(record)
        except Exception as e:
            await self._fail(record, str(e))
            raise

    # ── Deployment steps ──────────────────────────────────────────

    async def _deploy(self, record: DeploymentRecord) -> DeploymentRecord:
        started = time.monotonic()
        tenant_id = record.tenant_id
        await self._advance(record, DeploymentStatus.DEPLOYING, 20, "Creating payment environment clients...")

        # Both environments must resolve before anything is written to the target
        await self._clients.get_client(tenant_id, Environment.TEST)
        target = await self._clients.get_client(tenant_id, Environment.PRODUCTION)

        product = await self._products.get(tenant_id, record.product_id)
        if product is None:
            raise ProductNotFound(record.product_id)
        record.source_product_id = product.stripe_test_product_id
        record.source_price_id = product.stripe_test_price_id
        record.product_name = product.name
        record.price = product.price
        record.currency = product.currency

        deployed_at = utcnow()
        metadata = {
            "tenant_id": tenant_id,
            "source_product_id": record.product_id,
            "deployment_id": record.deployment_id,
            "deployed_at": deployed_at.isoformat(),
            "deployed_from": Environment.TEST.value,
        }

        target_product = await target.create_product(
            product.name, product.description, metadata,
            idempotency_key=f"{record.deployment_id}-product",
        )
        await self._advance(record, DeploymentStatus.DEPLOYING, 40, "Product created in production environment")

        target_price = await target.create_price(
            target_product.id,
            to_minor_units(product.price, product.currency),
            product.currency,
            {**metadata, "source_price_id": product.stripe_test_price_id or ""},
            idempotency_key=f"{record.deployment_id}-price",
        )
        await self._advance(record, DeploymentStatus.DEPLOYING, 60, "Price created in production environment")

        await self._products.record_promotion(
            tenant_id, record.product_id, target_product.id, target_price.id, deployed_at,
        )
        record.target_product_id = target_product.id
        record.target_price_id = target_price.id
        record.deployed_at = deployed_at
        await self._advance(record, DeploymentStatus.DEPLOYING, 80, "Updating deployment records...")

        duration_ms = int((time.monotonic() - started) * 1000)
        await self._audit.record(
            tenant_id, record.target_environment, AuditOperation.PRODUCT_DEPLOYMENT,
            payload={
                "product_id": record.product_id,
                "deployment_id": record.deployment_id,
                "target_product_id": target_product.id,
                "target_price_id": target_price.id,
            },
            actor=record.deployed_by, entity_type="deployment", entity_id=record.deployment_id,
            duration_ms=duration_ms,
        )

        record.error_message = None
        await self._advance(record, DeploymentStatus.COMPLETED, 100, "Deployment completed successfully!")
        await self._events.emit(
            DeploymentEventType.COMPLETED, tenant_id, record.deployment_id,
            data={"product_id": record.product_id, "target_product_id": target_product.id,
                  "target_price_id": target_price.id, "duration_ms": duration_ms},
        )
        logger.info(f"Deployed product {record.product_id} to production "
                    f"(deployment={record.deployment_id}, product={target_product.id}, price={target_price.id})")
        return record

    async def _advance(self, record: DeploymentRecord, status: DeploymentStatus,
                       progress: int, message: str) -> None:
        record.status = status
        record.progress_percentage = max(record.progress_percentage, max(0, min(100, progress)))
        record.progress_message = message
        await self._deployments.save(record)
        await self._events.emit(
            DeploymentEventType.PROGRESS, record.tenant_id, record.deployment_id,
            data={"status": status.value, "progress": record.progress_percentage, "message": message},
        )

    async def _fail(self, record: DeploymentRecord, error_message: str,
                    payload_extra: Optional[Dict[str, Any]] = None) -> None:
        record.status = DeploymentStatus.FAILED
        record.error_message = error_message
        # Target ids belong to completed records only
        record.target_product_id = None
        record.target_price_id = None
        record.deployed_at = None
        record.progress_percentage = 0
        record.progress_message = f"Deployment failed: {error_message}"
        await self._deployments.save(record)
        logger.error(f"Deployment {record.deployment_id} of product {record.product_id} failed: {error_message}")

        payload = {"product_id": record.product_id, "deployment_id": record.deployment_id}
        if payload_extra:
            payload.update(payload_extra)
        await self._audit.record(
            record.tenant_id, record.target_environment, AuditOperation.PRODUCT_DEPLOYMENT,
            payload=payload, actor=record.deployed_by, status=AuditStatus.FAILED,
            entity_type="deployment", entity_id=record.deployment_id, error_message=error_message,
        )
        await self._events.emit(
            DeploymentEventType.FAILED, record.tenant_id, record.deployment_id,
            data={"product_id": record.product_id, "error": error_message},
        )
