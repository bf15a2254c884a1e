"""Observability - deployment lifecycle event bus"""
from .events import EventBus, DeploymentEvent, DeploymentEventType, create_default_event_bus

__all__ = ["EventBus", "DeploymentEvent", "DeploymentEventType", "create_default_event_bus"]
