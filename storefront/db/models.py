"""
SQLAlchemy ORM models for the promotion pipeline.
Maps to PostgreSQL tables via Alembic migrations (SQLite for local runs and tests).
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Text, Integer, Numeric, Boolean, DateTime, Index, JSON, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base
from storefront.promotions.models import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Environment Registry ──────────────────────────────────────────────────────

class EnvironmentConfigModel(Base):
    """Per-tenant, per-environment payment account binding."""
    __tablename__ = "environment_configs"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)  # tenant_id:environment
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    # Fernet-encrypted tokens
    access_credential: Mapped[str] = mapped_column(Text, default="")
    refresh_credential: Mapped[str] = mapped_column(Text, default="")
    publishable_key: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_env_configs_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<EnvironmentConfig id={self.id} active={self.is_active}>"


class TenantEnvironmentStateModel(Base):
    """Which environment a tenant is currently working in."""
    __tablename__ = "tenant_environment_state"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    active_environment: Mapped[str] = mapped_column(String(20), default="test")
    switched_by: Mapped[str] = mapped_column(String(128), default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<TenantEnvironmentState tenant={self.tenant_id} env={self.active_environment}>"


# ── Products (external Product Store) ─────────────────────────────────────────

class ProductModel(Base):
    __tablename__ = "creator_products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), default="test")
    name: Mapped[str] = mapped_column(String(256), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    stripe_test_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_test_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_production_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_production_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_deployed_to_production: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_creator_products_tenant_env", "tenant_id", "environment"),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} env={self.environment}>"


# ── Deployments ───────────────────────────────────────────────────────────────

class DeploymentRecordModel(Base):
    __tablename__ = "product_environment_deployments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_environment: Mapped[str] = mapped_column(String(20), default="test")
    target_environment: Mapped[str] = mapped_column(String(20), default="production")
    source_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    source_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    target_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    target_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    validation_results_json: Mapped[list] = mapped_column(JSONType, default=list)
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)
    progress_message: Mapped[str] = mapped_column(Text, default="")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notification_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    product_name: Mapped[str] = mapped_column(String(256), default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    deployed_by: Mapped[str] = mapped_column(String(128), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("progress_percentage >= 0 AND progress_percentage <= 100",
                        name="ck_deployments_progress_range"),
        Index("ix_deployments_tenant_product", "tenant_id", "product_id"),
        Index("ix_deployments_status_scheduled", "status", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return f"<Deployment id={self.id} {self.source_environment}→{self.target_environment} status={self.status}>"


# ── Audit Log ─────────────────────────────────────────────────────────────────

class AuditLogModel(Base):
    """Append-only trace of environment-affecting operations."""
    __tablename__ = "environment_audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payload_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    actor: Mapped[str] = mapped_column(String(128), default="")
    status: Mapped[str] = mapped_column(String(20), default="completed")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_audit_tenant_env_created", "tenant_id", "environment", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} op={self.operation} status={self.status}>"
