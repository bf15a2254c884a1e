"""
AuditRepository — append-only storage of environment audit entries.
Exposes insert and query only; there is deliberately no update or delete.
"""
import logging
from typing import Optional, List

from sqlalchemy import select

from storefront.db.models import AuditLogModel
from storefront.db.store_base import SessionStore
from storefront.promotions.models import AuditLogEntry, AuditStatus, Environment

logger = logging.getLogger(__name__)


def _row_to_entry(row: AuditLogModel) -> AuditLogEntry:
    return AuditLogEntry(
        entry_id=row.id,
        tenant_id=row.tenant_id,
        environment=Environment(row.environment),
        operation=row.operation,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        payload=row.payload_json or {},
        actor=row.actor or "",
        status=AuditStatus(row.status),
        error_message=row.error_message,
        duration_ms=row.duration_ms,
        created_at=row.created_at,
    )


class AuditRepository(SessionStore):

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        async with self._session("write audit log entry") as session:
            session.add(AuditLogModel(
                id=entry.entry_id,
                tenant_id=entry.tenant_id,
                environment=entry.environment.value,
                operation=entry.operation,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                payload_json=entry.payload,
                actor=entry.actor,
                status=entry.status.value,
                error_message=entry.error_message,
                duration_ms=entry.duration_ms,
                created_at=entry.created_at,
            ))
            await session.commit()
        return entry

    async def list_entries(self, tenant_id: str, environment: Optional[Environment] = None,
                           operation: Optional[str] = None, entity_id: Optional[str] = None,
                           limit: int = 100) -> List[AuditLogEntry]:
        """Entries for a tenant, newest first."""
        stmt = select(AuditLogModel).where(AuditLogModel.tenant_id == tenant_id)
        if environment is not None:
            stmt = stmt.where(AuditLogModel.environment == environment.value)
        if operation:
            stmt = stmt.where(AuditLogModel.operation == operation)
        if entity_id:
            stmt = stmt.where(AuditLogModel.entity_id == entity_id)
        stmt = stmt.order_by(AuditLogModel.created_at.desc(), AuditLogModel.id.desc()).limit(limit)
        async with self._session("query audit log") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_entry(r) for r in rows]
