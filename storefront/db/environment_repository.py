"""
EnvironmentRepository — async persistence for environment configs and the tenant's active environment.
Bridges between the Pydantic EnvironmentConfig and the SQLAlchemy EnvironmentConfigModel.
"""
import logging
from typing import Optional, List

from sqlalchemy import select

from storefront.db.models import EnvironmentConfigModel, TenantEnvironmentStateModel
from storefront.db.store_base import SessionStore
from storefront.promotions.models import Environment, EnvironmentConfig, utcnow

logger = logging.getLogger(__name__)


def _row_to_config(row: EnvironmentConfigModel) -> EnvironmentConfig:
    return EnvironmentConfig(
        tenant_id=row.tenant_id,
        environment=Environment(row.environment),
        account_id=row.account_id,
        is_active=bool(row.is_active),
        access_credential=row.access_credential or "",
        refresh_credential=row.refresh_credential or "",
        publishable_key=row.publishable_key,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class EnvironmentRepository(SessionStore):
    """Upsert-keyed storage of (tenant, environment) bindings."""

    async def get(self, tenant_id: str, environment: Environment) -> Optional[EnvironmentConfig]:
        key = f"{tenant_id}:{environment.value}"
        async with self._session("load environment config") as session:
            row = (await session.execute(
                select(EnvironmentConfigModel).where(EnvironmentConfigModel.id == key)
            )).scalar_one_or_none()
            return _row_to_config(row) if row else None

    async def list_for_tenant(self, tenant_id: str) -> List[EnvironmentConfig]:
        async with self._session("list environment configs") as session:
            rows = (await session.execute(
                select(EnvironmentConfigModel)
                .where(EnvironmentConfigModel.tenant_id == tenant_id)
                .order_by(EnvironmentConfigModel.environment)
            )).scalars().all()
            return [_row_to_config(r) for r in rows]

    async def upsert(self, cfg: EnvironmentConfig) -> EnvironmentConfig:
        """Insert or update the row keyed on (tenant, environment)."""
        async with self._session("save environment config") as session:
            row = (await session.execute(
                select(EnvironmentConfigModel).where(EnvironmentConfigModel.id == cfg.config_id)
            )).scalar_one_or_none()
            now = utcnow()
            if row:
                row.account_id = cfg.account_id
                row.is_active = cfg.is_active
                row.access_credential = cfg.access_credential
                row.refresh_credential = cfg.refresh_credential
                row.publishable_key = cfg.publishable_key
                row.updated_at = now
            else:
                row = EnvironmentConfigModel(
                    id=cfg.config_id, tenant_id=cfg.tenant_id,
                    environment=cfg.environment.value,
                    account_id=cfg.account_id, is_active=cfg.is_active,
                    access_credential=cfg.access_credential,
                    refresh_credential=cfg.refresh_credential,
                    publishable_key=cfg.publishable_key,
                    created_at=now, updated_at=now,
                )
                session.add(row)
            await session.commit()
            logger.info(f"Saved environment config {cfg.config_id} (active={cfg.is_active})")
            return _row_to_config(row)

    # ── Active environment ────────────────────────────────────────

    async def get_active_environment(self, tenant_id: str) -> Optional[Environment]:
        async with self._session("load active environment") as session:
            row = (await session.execute(
                select(TenantEnvironmentStateModel)
                .where(TenantEnvironmentStateModel.tenant_id == tenant_id)
            )).scalar_one_or_none()
            return Environment(row.active_environment) if row else None

    async def set_active_environment(self, tenant_id: str, environment: Environment,
                                     switched_by: str) -> Optional[Environment]:
        """Write the active environment and return the previous one (None if never set)."""
        async with self._session("switch active environment") as session:
            row = (await session.execute(
                select(TenantEnvironmentStateModel)
                .where(TenantEnvironmentStateModel.tenant_id == tenant_id)
            )).scalar_one_or_none()
            previous = Environment(row.active_environment) if row else None
            if row:
                row.active_environment = environment.value
                row.switched_by = switched_by
                row.updated_at = utcnow()
            else:
                session.add(TenantEnvironmentStateModel(
                    tenant_id=tenant_id, active_environment=environment.value,
                    switched_by=switched_by, updated_at=utcnow(),
                ))
            await session.commit()
            return previous
