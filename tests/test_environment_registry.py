"""
Tests for EnvironmentRegistry — bindings, credential encryption, active environment switching.
Run: pytest tests/test_environment_registry.py -v
"""
import pytest

from conftest import OTHER_TENANT, TENANT, connect_environments
from storefront.audit.audit_log import AuditOperation
from storefront.observability.events import DeploymentEventType
from storefront.promotions.errors import EnvironmentNotConfigured
from storefront.promotions.models import DeploymentStatus, Environment
from storefront.utils.crypto import decrypt


class TestEnvironmentConfigs:

    @pytest.mark.asyncio
    async def test_require_config_when_absent(self, service):
        with pytest.raises(EnvironmentNotConfigured) as exc_info:
            await service.registry.require_config(TENANT, Environment.PRODUCTION)
        assert exc_info.value.environment == "production"

    @pytest.mark.asyncio
    async def test_require_config_when_inactive(self, service):
        await connect_environments(service)
        await service.deactivate_environment_config(TENANT, Environment.PRODUCTION)
        with pytest.raises(EnvironmentNotConfigured, match="inactive"):
            await service.registry.require_config(TENANT, Environment.PRODUCTION)

    @pytest.mark.asyncio
    async def test_credentials_are_encrypted_at_rest(self, service):
        cfg = await service.upsert_environment_config(
            TENANT, Environment.TEST, account_id="acct_test_123",
            access_token="sk_test_secret", refresh_token="rt_secret", is_active=True,
        )
        assert cfg.access_credential != "sk_test_secret"
        stored = await service.registry.get_config(TENANT, Environment.TEST)
        assert decrypt(stored.access_credential) == "sk_test_secret"
        assert decrypt(stored.refresh_credential) == "rt_secret"
        assert "access_credential" not in stored.public_view()
        assert stored.public_view()["has_credentials"] is True

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, service):
        await connect_environments(service)
        await service.upsert_environment_config(TENANT, Environment.TEST, publishable_key="pk_test_1")

        cfg = await service.registry.get_config(TENANT, Environment.TEST)
        assert cfg.publishable_key == "pk_test_1"
        assert cfg.account_id == "acct_test_123"
        assert cfg.is_active is True
        assert decrypt(cfg.access_credential) == "sk_test_abc"

    @pytest.mark.asyncio
    async def test_configs_are_tenant_scoped(self, service):
        await connect_environments(service)
        assert await service.registry.get_config(OTHER_TENANT, Environment.TEST) is None

    @pytest.mark.asyncio
    async def test_deactivate_unknown_config_returns_none(self, service):
        assert await service.deactivate_environment_config(TENANT, Environment.TEST) is None

    @pytest.mark.asyncio
    async def test_deactivate_is_soft(self, service):
        await connect_environments(service)
        cfg = await service.deactivate_environment_config(TENANT, Environment.PRODUCTION, actor="alice")
        assert cfg.is_active is False
        stored = await service.registry.get_config(TENANT, Environment.PRODUCTION)
        assert stored is not None
        assert stored.account_id == "acct_live_123"
        entries = await service.list_audit_log(TENANT, operation=AuditOperation.ENVIRONMENT_DEACTIVATED)
        assert entries[0].actor == "alice"


class TestActiveEnvironment:

    @pytest.mark.asyncio
    async def test_defaults_to_test(self, service):
        assert await service.get_active_environment(TENANT) == Environment.TEST

    @pytest.mark.asyncio
    async def test_switch_returns_previous_and_audits(self, service, recorded_events):
        previous = await service.switch_active_environment(TENANT, Environment.PRODUCTION, "alice")

        assert previous == Environment.TEST
        assert await service.get_active_environment(TENANT) == Environment.PRODUCTION
        entries = await service.list_audit_log(TENANT, operation=AuditOperation.ENVIRONMENT_SWITCH)
        assert len(entries) == 1
        assert entries[0].payload == {"previous_environment": "test", "new_environment": "production"}
        assert entries[0].actor == "alice"
        switched = [e for e in recorded_events if e.event_type == DeploymentEventType.ENVIRONMENT_SWITCHED]
        assert switched[0].data["current"] == "production"

    @pytest.mark.asyncio
    async def test_switch_back(self, service):
        await service.switch_active_environment(TENANT, Environment.PRODUCTION, "alice")
        previous = await service.switch_active_environment(TENANT, Environment.TEST, "alice")
        assert previous == Environment.PRODUCTION
        assert await service.get_active_environment(TENANT) == Environment.TEST
        assert await service.get_active_environment(OTHER_TENANT) == Environment.TEST

    @pytest.mark.asyncio
    async def test_switch_does_not_touch_deployments(self, service, ready):
        from datetime import timedelta
        from storefront.promotions.models import utcnow
        scheduled = await service.schedule(TENANT, ready.product_id, utcnow() + timedelta(hours=1), actor="alice")

        await service.switch_active_environment(TENANT, Environment.PRODUCTION, "alice")

        record = await service.get_status(TENANT, scheduled.deployment_id)
        assert record.status == DeploymentStatus.SCHEDULED
        assert record.updated_at == scheduled.updated_at

    @pytest.mark.asyncio
    async def test_overview(self, service):
        await connect_environments(service, production=False)
        await service.switch_active_environment(TENANT, Environment.PRODUCTION, "alice")

        overview = await service.get_environment_overview(TENANT)
        assert overview["current_environment"] == "production"
        assert overview["environments"]["test"] == {
            "enabled": True, "account_id": "acct_test_123", "has_credentials": True,
        }
        assert overview["environments"]["production"] == {
            "enabled": False, "account_id": None, "has_credentials": False,
        }
