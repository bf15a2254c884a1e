"""Environment Registry — per-tenant test/production payment environment bindings and the active environment."""
from .environment_registry import EnvironmentRegistry

__all__ = ["EnvironmentRegistry"]
