"""
Deployment Scheduler — deferred promotions.

A scheduled deployment is validated up front, parked in `scheduled`, and later claimed by
trigger() (manual "deploy now" or the polling loop). Claiming is a conditional
`scheduled → validating` update, so only one trigger can ever run a given record.
Cancellation uses the same guard: only `scheduled` records can be cancelled.

Runs as an asyncio background task when started, polling every SCHEDULER_POLL_SECONDS.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from storefront.audit.audit_log import AuditLog, AuditOperation
from storefront.db.deployment_repository import DeploymentRepository
from storefront.db.product_repository import ProductRepository
from storefront.observability.events import EventBus, DeploymentEventType
from storefront.promotions.errors import (
    DeploymentNotCancellable, DeploymentNotFound, DeploymentNotTriggerable,
    InvalidSchedule, PersistenceError, PromotionError, ValidationFailed,
)
from storefront.promotions.models import (
    DeploymentRecord, DeploymentStatus, NotificationPreferences,
    has_failures, to_naive_utc, utcnow,
)
from storefront.promotions.orchestrator import PromotionOrchestrator
from storefront.promotions.validation import ValidationEngine

logger = logging.getLogger(__name__)


def _check_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidSchedule(f"Unknown time zone '{name}'")
    return name


class DeploymentScheduler:

    def __init__(
        self,
        products: ProductRepository,
        deployments: DeploymentRepository,
        validator: ValidationEngine,
        orchestrator: PromotionOrchestrator,
        audit_log: AuditLog,
        events: Optional[EventBus] = None,
        poll_seconds: int = 60,
        batch_size: int = 50,
    ):
        self._products = products
        self._deployments = deployments
        self._validator = validator
        self._orchestrator = orchestrator
        self._audit = audit_log
        self._events = events or EventBus()
        self._poll_seconds = poll_seconds
        self._batch_size = batch_size
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ── Scheduling ────────────────────────────────────────────────

    async def schedule(
        self,
        tenant_id: str,
        product_id: str,
        when_utc: datetime,
        timezone: str = "UTC",
        actor: str = "system",
        notification_preferences: Optional[NotificationPreferences] = None,
    ) -> DeploymentRecord:
        """Validate now and park a deployment until `when_utc`.

        Raises InvalidSchedule for an unknown time zone or a time not in the future,
        and ValidationFailed when any check fails. Nothing is persisted in either case.
        """
        timezone = _check_timezone(timezone or "UTC")
        scheduled_for = to_naive_utc(when_utc)
        if scheduled_for <= utcnow():
            raise InvalidSchedule(f"Scheduled time {scheduled_for.isoformat()} is not in the future")

        results = await self._validator.validate(tenant_id, product_id)
        if has_failures(results):
            logger.warning(f"Refused to schedule {product_id} for tenant {tenant_id}: validation failed")
            raise ValidationFailed(results)

        product = await self._products.get(tenant_id, product_id)
        record = DeploymentRecord(
            tenant_id=tenant_id,
            product_id=product_id,
            source_product_id=product.stripe_test_product_id if product else None,
            source_price_id=product.stripe_test_price_id if product else None,
            product_name=product.name if product else "",
            price=product.price if product else 0,
            currency=product.currency if product else "usd",
            status=DeploymentStatus.SCHEDULED,
            validation_results=results,
            progress_percentage=0,
            progress_message="Deployment scheduled",
            scheduled_for=scheduled_for,
            timezone=timezone,
            notification_preferences=notification_preferences or NotificationPreferences(),
            deployed_by=actor,
        )
        await self._deployments.create(record)
        await self._audit.record(
            tenant_id, record.target_environment, AuditOperation.DEPLOYMENT_SCHEDULED,
            payload={"product_id": product_id, "deployment_id": record.deployment_id,
                     "scheduled_for": scheduled_for.isoformat(), "timezone": timezone},
            actor=actor, entity_type="deployment", entity_id=record.deployment_id,
        )
        await self._events.emit(
            DeploymentEventType.SCHEDULED, tenant_id, record.deployment_id,
            data={"product_id": product_id, "scheduled_for": scheduled_for.isoformat()},
        )
        logger.info(f"Scheduled deployment {record.deployment_id} of {product_id} for {scheduled_for.isoformat()} UTC")
        return record

    async def list_scheduled(self, tenant_id: str, limit: int = 50) -> List[DeploymentRecord]:
        return await self._deployments.list_scheduled(tenant_id, limit=limit)

    async def cancel(self, tenant_id: str, deployment_id: str, actor: str) -> DeploymentRecord:
        """Cancel a scheduled deployment. Any other status raises DeploymentNotCancellable."""
        cancelled = await self._deployments.transition(
            deployment_id, [DeploymentStatus.SCHEDULED], DeploymentStatus.CANCELLED,
            "Deployment cancelled by user", tenant_id=tenant_id,
        )
        record = await self._deployments.get(deployment_id, tenant_id=tenant_id)
        if record is None:
            raise DeploymentNotFound(deployment_id)
        if not cancelled:
            raise DeploymentNotCancellable(deployment_id, record.status.value)

        await self._audit.record(
            tenant_id, record.target_environment, AuditOperation.DEPLOYMENT_CANCELLED,
            payload={"product_id": record.product_id, "deployment_id": deployment_id},
            actor=actor, entity_type="deployment", entity_id=deployment_id,
        )
        await self._events.emit(DeploymentEventType.CANCELLED, tenant_id, deployment_id,
                                data={"product_id": record.product_id, "actor": actor})
        logger.info(f"Deployment {deployment_id} cancelled by {actor}")
        return record

    # ── Triggering ────────────────────────────────────────────────

    async def trigger(self, deployment_id: str, tenant_id: Optional[str] = None) -> DeploymentRecord:
        """Claim a scheduled record and run it through the orchestrator.

        Validation is re-run because the product or environments may have changed since
        the deployment was scheduled.
        """
        claimed = await self._deployments.transition(
            deployment_id, [DeploymentStatus.SCHEDULED], DeploymentStatus.VALIDATING,
            "Validating product for deployment...", tenant_id=tenant_id, progress_percentage=10,
        )
        record = await self._deployments.get(deployment_id, tenant_id=tenant_id)
        if record is None:
            raise DeploymentNotFound(deployment_id)
        if not claimed:
            raise DeploymentNotTriggerable(deployment_id, record.status.value)

        logger.info(f"Triggered scheduled deployment {deployment_id} of product {record.product_id}")
        await self._events.emit(
            DeploymentEventType.PROGRESS, record.tenant_id, deployment_id,
            data={"status": record.status.value, "progress": record.progress_percentage,
                  "message": record.progress_message},
        )
        return await self._orchestrator.execute(record)

    async def run_due(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Trigger every scheduled deployment whose time has come. Returns one outcome per record."""
        now = to_naive_utc(now) if now else utcnow()
        due = await self._deployments.list_due(now, limit=self._batch_size)
        outcomes = []
        for record in due:
            outcome: Dict[str, Any] = {"deployment_id": record.deployment_id, "product_id": record.product_id}
            try:
                result = await self.trigger(record.deployment_id)
                outcome["status"] = result.status.value
            except DeploymentNotTriggerable as e:
                # Claimed by a concurrent trigger or cancelled in between
                outcome["status"] = "skipped"
                outcome["error"] = str(e)
            except PromotionError as e:
                outcome["status"] = DeploymentStatus.FAILED.value
                outcome["error"] = str(e)
            except Exception as e:
                logger.exception(f"Scheduled deployment {record.deployment_id} raised unexpectedly")
                outcome["status"] = DeploymentStatus.FAILED.value
                outcome["error"] = str(e)
            outcomes.append(outcome)
        if outcomes:
            logger.info(f"Scheduler ran {len(outcomes)} due deployment(s)")
        return outcomes

    # ── Background loop ───────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Deployment scheduler already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Deployment scheduler started (poll every {self._poll_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Deployment scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_due()
            except asyncio.CancelledError:
                raise
            except PersistenceError as e:
                logger.error(f"Deployment scheduler store error: {e}")
            except Exception:
                logger.exception("Deployment scheduler iteration failed; retrying next poll")
            await asyncio.sleep(self._poll_seconds)
