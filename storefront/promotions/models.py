"""
Promotion pipeline domain models.
Environments, environment configs, products, validation results, deployment records and audit entries.
These are the typed records passed between the registry, validator, orchestrator, scheduler and stores.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, List, Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════════════
# Enums
# ══════════════════════════════════════════════════════════════════════════════

class Environment(str, Enum):
    TEST = "test"
    PRODUCTION = "production"


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    VALIDATING = "validating"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


IN_FLIGHT_STATUSES = (
    DeploymentStatus.PENDING,
    DeploymentStatus.SCHEDULED,
    DeploymentStatus.VALIDATING,
    DeploymentStatus.DEPLOYING,
)

class CheckStatus(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class AuditStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


# ══════════════════════════════════════════════════════════════════════════════
# Environment Registry
# ══════════════════════════════════════════════════════════════════════════════

class EnvironmentConfig(BaseModel):
    """Binding of one tenant to one payment environment."""
    tenant_id: str
    environment: Environment
    account_id: Optional[str] = None
    is_active: bool = False
    # Fernet ciphertext, see storefront.utils.crypto
    access_credential: str = ""
    refresh_credential: str = ""
    publishable_key: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def config_id(self) -> str:
        return f"{self.tenant_id}:{self.environment.value}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_credential)

    def public_view(self) -> Dict[str, Any]:
        """Serializable view with the secrets stripped."""
        return {
            "tenant_id": self.tenant_id,
            "environment": self.environment.value,
            "account_id": self.account_id,
            "is_active": self.is_active,
            "has_credentials": self.has_credentials,
            "publishable_key": self.publishable_key,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ══════════════════════════════════════════════════════════════════════════════
# Product Store read model
# ══════════════════════════════════════════════════════════════════════════════

class Product(BaseModel):
    product_id: str
    tenant_id: str
    environment: Environment = Environment.TEST
    name: str = ""
    description: str = ""
    price: Decimal = Decimal("0")
    currency: str = "usd"
    stripe_test_product_id: Optional[str] = None
    stripe_test_price_id: Optional[str] = None
    stripe_production_product_id: Optional[str] = None
    stripe_production_price_id: Optional[str] = None
    last_deployed_to_production: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


# ══════════════════════════════════════════════════════════════════════════════
# Validation
# ══════════════════════════════════════════════════════════════════════════════

class ValidationResult(BaseModel):
    """Outcome of a single readiness check."""
    check: str
    status: CheckStatus
    message: str
    details: Optional[Dict[str, Any]] = None

    @property
    def failed(self) -> bool:
        return self.status == CheckStatus.FAILED


def has_failures(results: List[ValidationResult]) -> bool:
    return any(r.failed for r in results)


def failure_messages(results: List[ValidationResult]) -> str:
    return ", ".join(r.message for r in results if r.failed)


# ══════════════════════════════════════════════════════════════════════════════
# Deployments
# ══════════════════════════════════════════════════════════════════════════════

class NotificationPreferences(BaseModel):
    email_notifications: bool = True
    webhook_notifications: bool = False
    reminder_before_minutes: int = Field(default=30, ge=0)


class DeploymentRecord(BaseModel):
    """One promotion attempt of a product from the test to the production environment."""
    deployment_id: str = Field(default_factory=lambda: f"dep-{uuid.uuid4().hex[:12]}")
    tenant_id: str
    product_id: str
    source_environment: Environment = Environment.TEST
    target_environment: Environment = Environment.PRODUCTION
    source_product_id: Optional[str] = None
    source_price_id: Optional[str] = None
    target_product_id: Optional[str] = None
    target_price_id: Optional[str] = None
    status: DeploymentStatus = DeploymentStatus.PENDING
    validation_results: List[ValidationResult] = Field(default_factory=list)
    progress_percentage: int = Field(default=0, ge=0, le=100)
    progress_message: str = ""
    error_message: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    timezone: Optional[str] = None
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    # Snapshot of the product at the time the deployment was requested
    product_name: str = ""
    price: Decimal = Decimal("0")
    currency: str = "usd"
    deployed_by: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deployed_at: Optional[datetime] = None


# ══════════════════════════════════════════════════════════════════════════════
# Audit
# ══════════════════════════════════════════════════════════════════════════════

class AuditLogEntry(BaseModel):
    entry_id: str = Field(default_factory=lambda: f"aud-{uuid.uuid4().hex[:12]}")
    tenant_id: str
    environment: Environment
    operation: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    actor: str = ""
    status: AuditStatus = AuditStatus.COMPLETED
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
