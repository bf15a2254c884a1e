"""
Environment Registry — per-tenant bindings to the test and production payment environments.
- Upsert of account/credential bindings keyed on (tenant, environment)
- Soft deactivation (configs are never deleted)
- The tenant's active environment, with audited switches
Credentials are encrypted before they reach the store.
"""

import logging
from typing import Optional, Dict, Any

from storefront.audit.audit_log import AuditLog, AuditOperation
from storefront.db.environment_repository import EnvironmentRepository
from storefront.observability.events import EventBus, DeploymentEventType
from storefront.promotions.errors import EnvironmentNotConfigured
from storefront.promotions.models import Environment, EnvironmentConfig
from storefront.utils.crypto import encrypt

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class EnvironmentRegistry:

    def __init__(self, repository: EnvironmentRepository, audit_log: AuditLog,
                 events: Optional[EventBus] = None):
        self._repo = repository
        self._audit = audit_log
        self._events = events or EventBus()

    # ── Configs ───────────────────────────────────────────────────

    async def get_config(self, tenant_id: str, environment: Environment) -> Optional[EnvironmentConfig]:
        return await self._repo.get(tenant_id, environment)

    async def require_config(self, tenant_id: str, environment: Environment) -> EnvironmentConfig:
        """Return the config or raise EnvironmentNotConfigured if it is absent or inactive."""
        cfg = await self._repo.get(tenant_id, environment)
        if cfg is None:
            raise EnvironmentNotConfigured(tenant_id, environment.value)
        if not cfg.is_active:
            raise EnvironmentNotConfigured(tenant_id, environment.value, reason="inactive")
        return cfg

    async def upsert_config(
        self,
        tenant_id: str,
        environment: Environment,
        account_id: Optional[str] = _UNSET,
        access_token: Optional[str] = _UNSET,
        refresh_token: Optional[str] = _UNSET,
        publishable_key: Optional[str] = _UNSET,
        is_active: bool = _UNSET,
        actor: str = "system",
    ) -> EnvironmentConfig:
        """Create the binding on first connection, or update only the fields supplied."""
        cfg = await self._repo.get(tenant_id, environment)
        created = cfg is None
        if cfg is None:
            cfg = EnvironmentConfig(tenant_id=tenant_id, environment=environment)

        changed = []
        if account_id is not _UNSET:
            cfg.account_id = account_id
            changed.append("account_id")
        if access_token is not _UNSET:
            cfg.access_credential = encrypt(access_token)
            changed.append("access_token")
        if refresh_token is not _UNSET:
            cfg.refresh_credential = encrypt(refresh_token)
            changed.append("refresh_token")
        if publishable_key is not _UNSET:
            cfg.publishable_key = publishable_key
            changed.append("publishable_key")
        if is_active is not _UNSET:
            cfg.is_active = bool(is_active)
            changed.append("is_active")

        saved = await self._repo.upsert(cfg)
        await self._audit.record(
            tenant_id, environment, AuditOperation.ENVIRONMENT_CONFIG_UPDATED,
            payload={"created": created, "fields": changed,
                     "account_id": saved.account_id, "is_active": saved.is_active},
            actor=actor, entity_type="environment_config", entity_id=saved.config_id,
        )
        return saved

    async def deactivate_config(self, tenant_id: str, environment: Environment,
                                actor: str = "system") -> Optional[EnvironmentConfig]:
        """Mark a binding inactive. Returns None if the environment was never connected."""
        cfg = await self._repo.get(tenant_id, environment)
        if cfg is None:
            return None
        cfg.is_active = False
        saved = await self._repo.upsert(cfg)
        await self._audit.record(
            tenant_id, environment, AuditOperation.ENVIRONMENT_DEACTIVATED,
            payload={"account_id": saved.account_id}, actor=actor,
            entity_type="environment_config", entity_id=saved.config_id,
        )
        return saved

    # ── Active environment ────────────────────────────────────────

    async def get_active_environment(self, tenant_id: str) -> Environment:
        """The tenant's working environment; `test` until explicitly switched."""
        return await self._repo.get_active_environment(tenant_id) or Environment.TEST

    async def switch_active_environment(self, tenant_id: str, environment: Environment,
                                        actor: str) -> Environment:
        """Switch the working environment. Metadata only: deployments are untouched."""
        previous = await self._repo.set_active_environment(tenant_id, environment, actor)
        previous = previous or Environment.TEST
        logger.info(f"Switched tenant {tenant_id} environment {previous.value} → {environment.value}")
        await self._audit.record(
            tenant_id, environment, AuditOperation.ENVIRONMENT_SWITCH,
            payload={"previous_environment": previous.value, "new_environment": environment.value},
            actor=actor, entity_type="tenant", entity_id=tenant_id,
        )
        await self._events.emit(
            DeploymentEventType.ENVIRONMENT_SWITCHED, tenant_id,
            data={"previous": previous.value, "current": environment.value, "actor": actor},
        )
        return previous

    async def get_overview(self, tenant_id: str) -> Dict[str, Any]:
        """Active environment plus a non-secret summary of each binding."""
        current = await self.get_active_environment(tenant_id)
        configs = {cfg.environment: cfg for cfg in await self._repo.list_for_tenant(tenant_id)}
        environments = {}
        for env in Environment:
            cfg = configs.get(env)
            environments[env.value] = {
                "enabled": bool(cfg and cfg.is_active),
                "account_id": cfg.account_id if cfg else None,
                "has_credentials": bool(cfg and cfg.has_credentials),
            }
        return {"current_environment": current.value, "environments": environments}
