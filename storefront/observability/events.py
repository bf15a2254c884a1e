"""
Deployment event bus — structured lifecycle hooks for telemetry sinks.

Fire-and-forget emission with registered async handlers. Handler errors are logged
but never propagate, so a broken sink cannot fail a deployment.

Usage:
    bus = EventBus()
    bus.register_handler(my_handler, event_type=DeploymentEventType.FAILED)
    await bus.emit(DeploymentEventType.FAILED, tenant_id="t1", data={...})
"""

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from storefront.promotions.models import utcnow

logger = logging.getLogger(__name__)


class DeploymentEventType(str, Enum):
    CREATED = "deployment.created"
    PROGRESS = "deployment.progress"
    SCHEDULED = "deployment.scheduled"
    CANCELLED = "deployment.cancelled"
    COMPLETED = "deployment.completed"
    FAILED = "deployment.failed"
    ENVIRONMENT_SWITCHED = "environment.switched"


class DeploymentEvent(BaseModel):
    event_type: DeploymentEventType
    tenant_id: str
    deployment_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    data: Dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[DeploymentEvent], Awaitable[None]]


class EventBus:
    """In-process bus; handlers for one event run concurrently."""

    def __init__(self):
        self._handlers: Dict[Optional[DeploymentEventType], List[EventHandler]] = {}

    def register_handler(self, handler: EventHandler,
                         event_type: Optional[DeploymentEventType] = None) -> None:
        """Register a handler for one event type, or for every event when event_type is None."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered event handler {getattr(handler, '__name__', handler)} "
                     f"for {event_type.value if event_type else 'ALL'}")

    async def emit(self, event_type: DeploymentEventType, tenant_id: str,
                   deployment_id: Optional[str] = None,
                   data: Optional[Dict[str, Any]] = None) -> DeploymentEvent:
        event = DeploymentEvent(
            event_type=event_type, tenant_id=tenant_id,
            deployment_id=deployment_id, data=data or {},
        )
        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._handlers.get(None, []))
        if not handlers:
            return event

        async def _safe_call(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    f"Event handler {getattr(handler, '__name__', handler)} failed "
                    f"for {event_type.value} (tenant={tenant_id})"
                )

        await asyncio.gather(*[_safe_call(h) for h in handlers])
        return event

    @property
    def handler_count(self) -> int:
        return sum(len(v) for v in self._handlers.values())


async def log_event_handler(event: DeploymentEvent) -> None:
    """Default sink: one log line per lifecycle event."""
    level = logging.ERROR if event.event_type == DeploymentEventType.FAILED else logging.INFO
    logger.log(level, f"[{event.event_type.value}] tenant={event.tenant_id} "
                      f"deployment={event.deployment_id or '-'} {event.data}")


def create_default_event_bus() -> EventBus:
    bus = EventBus()
    bus.register_handler(log_event_handler)
    return bus
