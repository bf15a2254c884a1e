"""
DeploymentRepository — durable store of deployment records.
Bridges between the Pydantic DeploymentRecord and the SQLAlchemy DeploymentRecordModel.
Writes are single-row; state-guarded transitions use conditional UPDATEs so concurrent
callers (cron trigger, manual trigger, cancel) cannot both win.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Sequence

from sqlalchemy import select, update

from storefront.db.models import DeploymentRecordModel
from storefront.db.store_base import SessionStore
from storefront.promotions.models import (
    DeploymentRecord, DeploymentStatus, Environment, NotificationPreferences,
    ValidationResult, IN_FLIGHT_STATUSES, utcnow,
)

logger = logging.getLogger(__name__)


def _record_to_row(record: DeploymentRecord) -> dict:
    return {
        "tenant_id": record.tenant_id,
        "product_id": record.product_id,
        "source_environment": record.source_environment.value,
        "target_environment": record.target_environment.value,
        "source_product_id": record.source_product_id,
        "source_price_id": record.source_price_id,
        "target_product_id": record.target_product_id,
        "target_price_id": record.target_price_id,
        "status": record.status.value,
        "validation_results_json": [r.model_dump(mode="json") for r in record.validation_results],
        "progress_percentage": record.progress_percentage,
        "progress_message": record.progress_message,
        "error_message": record.error_message,
        "scheduled_for": record.scheduled_for,
        "timezone": record.timezone,
        "notification_json": record.notification_preferences.model_dump(mode="json"),
        "product_name": record.product_name,
        "price": record.price,
        "currency": record.currency,
        "deployed_by": record.deployed_by,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "deployed_at": record.deployed_at,
    }


def _row_to_record(row: DeploymentRecordModel) -> DeploymentRecord:
    return DeploymentRecord(
        deployment_id=row.id,
        tenant_id=row.tenant_id,
        product_id=row.product_id,
        source_environment=Environment(row.source_environment),
        target_environment=Environment(row.target_environment),
        source_product_id=row.source_product_id,
        source_price_id=row.source_price_id,
        target_product_id=row.target_product_id,
        target_price_id=row.target_price_id,
        status=DeploymentStatus(row.status),
        validation_results=[ValidationResult(**r) for r in (row.validation_results_json or [])],
        progress_percentage=row.progress_percentage or 0,
        progress_message=row.progress_message or "",
        error_message=row.error_message,
        scheduled_for=row.scheduled_for,
        timezone=row.timezone,
        notification_preferences=NotificationPreferences(**(row.notification_json or {})),
        product_name=row.product_name or "",
        price=Decimal(str(row.price)) if row.price is not None else Decimal("0"),
        currency=row.currency or "usd",
        deployed_by=row.deployed_by or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
        deployed_at=row.deployed_at,
    )


class DeploymentRepository(SessionStore):
    """Async CRUD and filtered queries for deployment records. Records are never deleted."""

    async def create(self, record: DeploymentRecord) -> DeploymentRecord:
        async with self._session("create deployment record") as session:
            session.add(DeploymentRecordModel(id=record.deployment_id, **_record_to_row(record)))
            await session.commit()
        logger.info(f"Created deployment {record.deployment_id} for product {record.product_id} "
                    f"(status={record.status.value})")
        return record

    async def save(self, record: DeploymentRecord) -> DeploymentRecord:
        """Write the full record back. Last write wins on the row."""
        record.updated_at = utcnow()
        async with self._session("update deployment record") as session:
            row = await session.get(DeploymentRecordModel, record.deployment_id)
            if row is None:
                session.add(DeploymentRecordModel(id=record.deployment_id, **_record_to_row(record)))
            else:
                for k, v in _record_to_row(record).items():
                    setattr(row, k, v)
            await session.commit()
        return record

    async def get(self, deployment_id: str, tenant_id: Optional[str] = None) -> Optional[DeploymentRecord]:
        """Fetch a record by id, optionally scoped to its owning tenant."""
        stmt = select(DeploymentRecordModel).where(DeploymentRecordModel.id == deployment_id)
        if tenant_id is not None:
            stmt = stmt.where(DeploymentRecordModel.tenant_id == tenant_id)
        async with self._session("load deployment record") as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_record(row) if row else None

    async def transition(self, deployment_id: str, from_statuses: Sequence[DeploymentStatus],
                         to_status: DeploymentStatus, progress_message: str,
                         tenant_id: Optional[str] = None,
                         progress_percentage: Optional[int] = None) -> bool:
        """Atomically move a record to `to_status` only if it is currently in `from_statuses`."""
        values = {
            "status": to_status.value,
            "progress_message": progress_message,
            "updated_at": utcnow(),
        }
        if progress_percentage is not None:
            values["progress_percentage"] = max(0, min(100, progress_percentage))
        stmt = (
            update(DeploymentRecordModel)
            .where(
                DeploymentRecordModel.id == deployment_id,
                DeploymentRecordModel.status.in_([s.value for s in from_statuses]),
            )
            .values(**values)
        )
        if tenant_id is not None:
            stmt = stmt.where(DeploymentRecordModel.tenant_id == tenant_id)
        async with self._session("transition deployment record") as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def list_by_product(self, tenant_id: str, product_id: str, limit: int = 100) -> List[DeploymentRecord]:
        """Full deployment history of a product, newest first."""
        async with self._session("list deployment history") as session:
            rows = (await session.execute(
                select(DeploymentRecordModel)
                .where(DeploymentRecordModel.tenant_id == tenant_id,
                       DeploymentRecordModel.product_id == product_id)
                .order_by(DeploymentRecordModel.created_at.desc())
                .limit(limit)
            )).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def list_in_flight(self, tenant_id: str, product_id: str,
                             exclude_id: Optional[str] = None) -> List[DeploymentRecord]:
        stmt = (
            select(DeploymentRecordModel)
            .where(DeploymentRecordModel.tenant_id == tenant_id,
                   DeploymentRecordModel.product_id == product_id,
                   DeploymentRecordModel.status.in_([s.value for s in IN_FLIGHT_STATUSES]))
            .order_by(DeploymentRecordModel.created_at)
        )
        if exclude_id:
            stmt = stmt.where(DeploymentRecordModel.id != exclude_id)
        async with self._session("list in-flight deployments") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def list_scheduled(self, tenant_id: str, limit: int = 50) -> List[DeploymentRecord]:
        """Pending scheduled deployments of a tenant, soonest first."""
        async with self._session("list scheduled deployments") as session:
            rows = (await session.execute(
                select(DeploymentRecordModel)
                .where(DeploymentRecordModel.tenant_id == tenant_id,
                       DeploymentRecordModel.status == DeploymentStatus.SCHEDULED.value)
                .order_by(DeploymentRecordModel.scheduled_for.asc())
                .limit(limit)
            )).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def list_due(self, now: datetime, limit: int = 50) -> List[DeploymentRecord]:
        """Scheduled deployments across all tenants whose time has come."""
        async with self._session("list due deployments") as session:
            rows = (await session.execute(
                select(DeploymentRecordModel)
                .where(DeploymentRecordModel.status == DeploymentStatus.SCHEDULED.value,
                       DeploymentRecordModel.scheduled_for <= now)
                .order_by(DeploymentRecordModel.scheduled_for.asc())
                .limit(limit)
            )).scalars().all()
            return [_row_to_record(r) for r in rows]
