"""
Audit Log — append-only trace of environment-affecting operations.
Environment switches, promotions, schedules and cancellations all land here.
Write failures are raised, never swallowed: this is the only durable trace of those actions.
"""

import logging
from typing import Optional, Dict, List, Any

from storefront.db.audit_repository import AuditRepository
from storefront.promotions.models import AuditLogEntry, AuditStatus, Environment

logger = logging.getLogger(__name__)


class AuditOperation:
    """Well-known operation names."""
    ENVIRONMENT_SWITCH = "environment_switch"
    ENVIRONMENT_CONFIG_UPDATED = "environment_config_updated"
    ENVIRONMENT_DEACTIVATED = "environment_deactivated"
    PRODUCT_DEPLOYMENT = "product_deployment"
    DEPLOYMENT_SCHEDULED = "deployment_scheduled"
    DEPLOYMENT_CANCELLED = "deployment_cancelled"


class AuditLog:

    def __init__(self, repository: AuditRepository):
        self._repo = repository

    async def record(
        self,
        tenant_id: str,
        environment: Environment,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        actor: str = "system",
        status: AuditStatus = AuditStatus.COMPLETED,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> AuditLogEntry:
        """Append one entry. Raises PersistenceError if the store rejects the write."""
        entry = AuditLogEntry(
            tenant_id=tenant_id, environment=environment, operation=operation,
            entity_type=entity_type, entity_id=entity_id,
            payload=payload or {}, actor=actor or "system", status=status,
            error_message=error_message, duration_ms=duration_ms,
        )
        await self._repo.append(entry)
        logger.info(f"Audit: {operation} [{status.value}] tenant={tenant_id} env={environment.value} "
                    f"actor={entry.actor}")
        return entry

    async def list_entries(self, tenant_id: str, environment: Optional[Environment] = None,
                           operation: Optional[str] = None, entity_id: Optional[str] = None,
                           limit: int = 100) -> List[AuditLogEntry]:
        """Newest-first entries for a tenant, optionally narrowed to one environment."""
        return await self._repo.list_entries(
            tenant_id, environment=environment, operation=operation,
            entity_id=entity_id, limit=limit,
        )
