"""
Tests for the deployment EventBus.
Run: pytest tests/test_events.py -v
"""
import pytest

from storefront.observability.events import (
    DeploymentEventType, EventBus, create_default_event_bus,
)


class TestEventBus:

    @pytest.mark.asyncio
    async def test_typed_and_wildcard_handlers(self):
        bus = EventBus()
        typed, everything = [], []

        async def on_failed(event):
            typed.append(event)

        async def on_any(event):
            everything.append(event)

        bus.register_handler(on_failed, event_type=DeploymentEventType.FAILED)
        bus.register_handler(on_any)

        await bus.emit(DeploymentEventType.PROGRESS, "tenant-acme", "dep-1", data={"progress": 20})
        await bus.emit(DeploymentEventType.FAILED, "tenant-acme", "dep-1", data={"error": "boom"})

        assert [e.event_type for e in typed] == [DeploymentEventType.FAILED]
        assert [e.event_type for e in everything] == [DeploymentEventType.PROGRESS, DeploymentEventType.FAILED]
        assert everything[0].data == {"progress": 20}
        assert everything[0].deployment_id == "dep-1"

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_propagate(self):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("sink down")

        async def healthy(event):
            received.append(event)

        bus.register_handler(broken)
        bus.register_handler(healthy)

        event = await bus.emit(DeploymentEventType.COMPLETED, "tenant-acme", "dep-1")
        assert event.event_type == DeploymentEventType.COMPLETED
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_emit_without_handlers(self):
        event = await EventBus().emit(DeploymentEventType.CREATED, "tenant-acme")
        assert event.data == {}
        assert event.correlation_id

    def test_handler_count(self):
        assert create_default_event_bus().handler_count == 1
        assert EventBus().handler_count == 0
