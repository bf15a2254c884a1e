"""
Promotion pipeline error taxonomy.

Every error raised by the registry, validator, orchestrator, scheduler and stores
derives from PromotionError so API layers can map the whole family at once.
"""

from typing import List, Optional

from storefront.promotions.models import ValidationResult, failure_messages


class PromotionError(Exception):
    """Base class for promotion pipeline errors."""


class NotAuthenticated(PromotionError):
    """Caller identity is missing."""


class EnvironmentNotConfigured(PromotionError):
    def __init__(self, tenant_id: str, environment: str, reason: str = "not configured"):
        self.tenant_id = tenant_id
        self.environment = environment
        super().__init__(f"The {environment} environment is {reason} for tenant {tenant_id}")


class ProductNotFound(PromotionError):
    def __init__(self, product_id: str, environment: str = "test"):
        self.product_id = product_id
        self.environment = environment
        super().__init__(f"Product {product_id} not found in {environment} environment")


class ValidationFailed(PromotionError):
    """Raised by deploy/schedule when the validation report contains a failed check."""

    def __init__(self, results: List[ValidationResult]):
        self.results = list(results)
        super().__init__(f"Product validation failed: {failure_messages(self.results)}")

    @property
    def failures(self) -> List[ValidationResult]:
        return [r for r in self.results if r.failed]


class ProviderError(PromotionError):
    """The external payment provider rejected or timed out a call."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class PersistenceError(PromotionError):
    """A durable store read or write failed."""


class DeploymentNotFound(PromotionError):
    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        super().__init__(f"Deployment {deployment_id} not found")


class InvalidDeploymentState(PromotionError):
    """The requested transition is not legal from the record's current status."""

    def __init__(self, deployment_id: str, status: str, action: str):
        self.deployment_id = deployment_id
        self.status = status
        super().__init__(f"Cannot {action} deployment {deployment_id} in status '{status}'")


class DeploymentNotCancellable(InvalidDeploymentState):
    def __init__(self, deployment_id: str, status: str):
        super().__init__(deployment_id, status, "cancel")


class DeploymentNotTriggerable(InvalidDeploymentState):
    def __init__(self, deployment_id: str, status: str):
        super().__init__(deployment_id, status, "trigger")


class DeploymentConflict(PromotionError):
    """Single-flight mode refused a deployment because another one is in flight."""

    def __init__(self, product_id: str, deployment_ids: List[str]):
        self.product_id = product_id
        self.deployment_ids = deployment_ids
        super().__init__(
            f"Product {product_id} already has an active deployment: {', '.join(deployment_ids)}"
        )


class InvalidSchedule(PromotionError):
    """Schedule time or time zone is unusable."""
