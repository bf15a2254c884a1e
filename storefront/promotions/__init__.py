"""Promotion pipeline — domain models, errors, validation, orchestration and scheduling."""
from .models import (
    Environment, DeploymentStatus, CheckStatus, AuditStatus,
    EnvironmentConfig, Product, ValidationResult, NotificationPreferences,
    DeploymentRecord, AuditLogEntry,
)
from .errors import (
    PromotionError, NotAuthenticated, EnvironmentNotConfigured, ProductNotFound,
    ValidationFailed, ProviderError, PersistenceError, DeploymentNotFound,
    InvalidDeploymentState, DeploymentNotCancellable, DeploymentNotTriggerable,
    DeploymentConflict, InvalidSchedule,
)

__all__ = [
    "Environment", "DeploymentStatus", "CheckStatus", "AuditStatus",
    "EnvironmentConfig", "Product", "ValidationResult", "NotificationPreferences",
    "DeploymentRecord", "AuditLogEntry",
    "PromotionError", "NotAuthenticated", "EnvironmentNotConfigured", "ProductNotFound",
    "ValidationFailed", "ProviderError", "PersistenceError", "DeploymentNotFound",
    "InvalidDeploymentState", "DeploymentNotCancellable", "DeploymentNotTriggerable",
    "DeploymentConflict", "InvalidSchedule",
]
