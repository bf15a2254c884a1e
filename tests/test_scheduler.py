"""
Tests for DeploymentScheduler — scheduling, cancellation, triggering and the due-run loop.
Run: pytest tests/test_scheduler.py -v
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import OTHER_TENANT, TENANT, connect_environments, seed_product
from storefront.audit.audit_log import AuditOperation
from storefront.observability.events import DeploymentEventType
from storefront.promotions.errors import (
    DeploymentNotCancellable, DeploymentNotFound, DeploymentNotTriggerable,
    InvalidSchedule, ValidationFailed,
)
from storefront.promotions.models import (
    DeploymentRecord, DeploymentStatus, NotificationPreferences, utcnow,
)
from storefront.promotions.scheduler import DeploymentScheduler


def _in(hours=0, minutes=0):
    return utcnow() + timedelta(hours=hours, minutes=minutes)


class TestSchedule:

    @pytest.mark.asyncio
    async def test_schedule_persists_scheduled_record(self, service, ready, recorded_events):
        when = _in(hours=3)
        record = await service.schedule(
            TENANT, ready.product_id, when, timezone="Europe/Berlin", actor="alice",
            notification_preferences=NotificationPreferences(reminder_before_minutes=15),
        )

        assert record.status == DeploymentStatus.SCHEDULED
        assert record.progress_percentage == 0
        assert record.progress_message == "Deployment scheduled"

        stored = await service.get_status(TENANT, record.deployment_id)
        assert stored.status == DeploymentStatus.SCHEDULED
        assert stored.scheduled_for == when
        assert stored.timezone == "Europe/Berlin"
        assert stored.notification_preferences.reminder_before_minutes == 15
        assert stored.deployed_by == "alice"
        assert len(stored.validation_results) == 6
        assert any(e.event_type == DeploymentEventType.SCHEDULED for e in recorded_events)

    @pytest.mark.asyncio
    async def test_aware_datetime_is_stored_as_utc(self, service, ready):
        aware = datetime.now(timezone(timedelta(hours=2))) + timedelta(hours=1)
        record = await service.schedule(TENANT, ready.product_id, aware, actor="alice")
        expected = aware.astimezone(timezone.utc).replace(tzinfo=None)
        assert (await service.get_status(TENANT, record.deployment_id)).scheduled_for == expected

    @pytest.mark.asyncio
    async def test_scheduling_is_audited(self, service, ready):
        record = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        entries = await service.list_audit_log(TENANT, operation=AuditOperation.DEPLOYMENT_SCHEDULED)
        assert len(entries) == 1
        assert entries[0].entity_id == record.deployment_id
        assert entries[0].actor == "alice"

    @pytest.mark.asyncio
    async def test_list_scheduled_is_soonest_first(self, service, ready):
        later = await service.schedule(TENANT, ready.product_id, _in(hours=5), actor="alice")
        sooner = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")

        scheduled = await service.list_scheduled(TENANT)
        assert [r.deployment_id for r in scheduled] == [sooner.deployment_id, later.deployment_id]
        assert await service.list_scheduled(OTHER_TENANT) == []

    @pytest.mark.asyncio
    async def test_invalid_product_is_not_scheduled(self, service, product_repo, fake_provider):
        await connect_environments(service)
        await seed_product(product_repo, fake_provider, price=Decimal("0"))

        with pytest.raises(ValidationFailed) as exc_info:
            await service.schedule(TENANT, "prod-pro-plan", _in(hours=1), actor="alice")

        assert [r.check for r in exc_info.value.failures] == ["product_price"]
        assert await service.list_history(TENANT, "prod-pro-plan") == []

    @pytest.mark.asyncio
    async def test_past_time_is_rejected(self, service, ready):
        with pytest.raises(InvalidSchedule):
            await service.schedule(TENANT, ready.product_id, _in(minutes=-5), actor="alice")
        assert await service.list_scheduled(TENANT) == []

    @pytest.mark.asyncio
    async def test_unknown_timezone_is_rejected(self, service, ready):
        with pytest.raises(InvalidSchedule):
            await service.schedule(TENANT, ready.product_id, _in(hours=1),
                                   timezone="Mars/Olympus_Mons", actor="alice")


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_scheduled_deployment(self, service, ready, recorded_events):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")

        cancelled = await service.cancel_scheduled(TENANT, scheduled.deployment_id, "bob")

        assert cancelled.status == DeploymentStatus.CANCELLED
        assert cancelled.progress_message == "Deployment cancelled by user"
        assert await service.list_scheduled(TENANT) == []
        entries = await service.list_audit_log(TENANT, operation=AuditOperation.DEPLOYMENT_CANCELLED)
        assert entries[0].actor == "bob"
        assert any(e.event_type == DeploymentEventType.CANCELLED for e in recorded_events)

    @pytest.mark.asyncio
    async def test_second_cancel_is_refused(self, service, ready):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        await service.cancel_scheduled(TENANT, scheduled.deployment_id, "bob")

        with pytest.raises(DeploymentNotCancellable) as exc_info:
            await service.cancel_scheduled(TENANT, scheduled.deployment_id, "bob")
        assert exc_info.value.status == "cancelled"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        DeploymentStatus.COMPLETED, DeploymentStatus.FAILED, DeploymentStatus.DEPLOYING,
    ])
    async def test_non_scheduled_records_cannot_be_cancelled(self, service, ready, status):
        record = DeploymentRecord(tenant_id=TENANT, product_id=ready.product_id, status=status)
        await service.deployments.create(record)

        with pytest.raises(DeploymentNotCancellable):
            await service.cancel_scheduled(TENANT, record.deployment_id, "bob")

        assert (await service.get_status(TENANT, record.deployment_id)).status == status

    @pytest.mark.asyncio
    async def test_unknown_deployment_is_not_found(self, service):
        with pytest.raises(DeploymentNotFound):
            await service.cancel_scheduled(TENANT, "dep-nope", "bob")

    @pytest.mark.asyncio
    async def test_other_tenants_deployment_is_not_found(self, service, ready):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")

        with pytest.raises(DeploymentNotFound):
            await service.cancel_scheduled(OTHER_TENANT, scheduled.deployment_id, "mallory")

        assert (await service.get_status(TENANT, scheduled.deployment_id)).status == DeploymentStatus.SCHEDULED


class TestTrigger:

    @pytest.mark.asyncio
    async def test_trigger_runs_deployment_to_completion(self, service, ready, fake_provider):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")

        record = await service.trigger(scheduled.deployment_id, tenant_id=TENANT)

        assert record.status == DeploymentStatus.COMPLETED
        assert record.progress_percentage == 100
        assert record.target_product_id in fake_provider.products["production"]
        assert record.deployed_by == "alice"

    @pytest.mark.asyncio
    async def test_completed_deployment_cannot_be_triggered_again(self, service, ready, fake_provider):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        await service.trigger(scheduled.deployment_id)

        with pytest.raises(DeploymentNotTriggerable):
            await service.trigger(scheduled.deployment_id)
        assert len(fake_provider.products["production"]) == 1

    @pytest.mark.asyncio
    async def test_cancelled_deployment_cannot_be_triggered(self, service, ready):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        await service.cancel_scheduled(TENANT, scheduled.deployment_id, "alice")

        with pytest.raises(DeploymentNotTriggerable):
            await service.trigger(scheduled.deployment_id)

    @pytest.mark.asyncio
    async def test_trigger_unknown_deployment(self, service):
        with pytest.raises(DeploymentNotFound):
            await service.trigger("dep-nope")

    @pytest.mark.asyncio
    async def test_trigger_revalidates_changed_product(self, service, ready, product_repo, fake_provider):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        await product_repo.save(ready.model_copy(update={"price": Decimal("0")}))

        with pytest.raises(ValidationFailed):
            await service.trigger(scheduled.deployment_id)

        record = await service.get_status(TENANT, scheduled.deployment_id)
        assert record.status == DeploymentStatus.FAILED
        assert record.progress_percentage == 0
        assert "Product price must be greater than 0" in record.error_message
        assert fake_provider.products["production"] == {}

    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_the_deployment_once(self, service, ready, fake_provider):
        scheduled = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")

        outcomes = await asyncio.gather(
            service.trigger(scheduled.deployment_id),
            service.trigger(scheduled.deployment_id),
            return_exceptions=True,
        )

        completed = [o for o in outcomes if isinstance(o, DeploymentRecord)]
        refused = [o for o in outcomes if isinstance(o, DeploymentNotTriggerable)]
        assert len(completed) == 1
        assert len(refused) == 1
        assert len(fake_provider.products["production"]) == 1


class TestRunDue:

    @pytest.mark.asyncio
    async def test_run_due_triggers_only_due_records(self, service, ready):
        due = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        not_due = await service.schedule(TENANT, ready.product_id, _in(hours=5), actor="alice")

        outcomes = await service.scheduler.run_due(now=_in(hours=2))

        assert [o["deployment_id"] for o in outcomes] == [due.deployment_id]
        assert outcomes[0]["status"] == "completed"
        assert (await service.get_status(TENANT, not_due.deployment_id)).status == DeploymentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_run_due_reports_failures_and_continues(self, service, ready, product_repo, fake_provider):
        other = await seed_product(product_repo, fake_provider, product_id="prod-team-plan", name="Team Plan")
        first = await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        second = await service.schedule(TENANT, other.product_id, _in(hours=1, minutes=30), actor="alice")
        await product_repo.save(ready.model_copy(update={"name": ""}))

        outcomes = await service.scheduler.run_due(now=_in(hours=2))

        by_id = {o["deployment_id"]: o for o in outcomes}
        assert by_id[first.deployment_id]["status"] == "failed"
        assert "Product name is required" in by_id[first.deployment_id]["error"]
        assert by_id[second.deployment_id]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_run_due_with_nothing_due(self, service, ready):
        await service.schedule(TENANT, ready.product_id, _in(hours=1), actor="alice")
        assert await service.scheduler.run_due() == []


class TestBackgroundLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service):
        scheduler = service.scheduler
        assert not scheduler.running

        await scheduler.start()
        assert scheduler.running
        await scheduler.start()  # second start is a no-op
        await asyncio.sleep(0)

        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(self, service, product_repo):
        class FlakyDeployments:
            calls = 0

            async def list_due(self, now, limit=50):
                FlakyDeployments.calls += 1
                if FlakyDeployments.calls == 1:
                    raise RuntimeError("connection reset by peer")
                return []

        scheduler = DeploymentScheduler(product_repo, FlakyDeployments(), service.validator,
                                        service.orchestrator, service.audit_log, poll_seconds=0.01)
        await scheduler.start()
        try:
            await asyncio.sleep(0.2)
            assert FlakyDeployments.calls >= 2
            assert scheduler.running
            assert not scheduler._task.done()
        finally:
            await scheduler.stop()
