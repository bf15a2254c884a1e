"""001 – environment bindings, products, deployments and audit log

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── environment_configs ───────────────────────────────────────
    op.create_table(
        "environment_configs",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("environment", sa.String(20), nullable=False),
        sa.Column("account_id", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="false"),
        sa.Column("access_credential", sa.Text, server_default=""),
        sa.Column("refresh_credential", sa.Text, server_default=""),
        sa.Column("publishable_key", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_env_configs_tenant", "environment_configs", ["tenant_id"])

    # ── tenant_environment_state ──────────────────────────────────
    op.create_table(
        "tenant_environment_state",
        sa.Column("tenant_id", sa.String(64), primary_key=True),
        sa.Column("active_environment", sa.String(20), server_default="test"),
        sa.Column("switched_by", sa.String(128), server_default=""),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    # ── creator_products ──────────────────────────────────────────
    op.create_table(
        "creator_products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("environment", sa.String(20), server_default="test"),
        sa.Column("name", sa.String(256), server_default=""),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("price", sa.Numeric(12, 2), server_default="0"),
        sa.Column("currency", sa.String(3), server_default="usd"),
        sa.Column("stripe_test_product_id", sa.String(128), nullable=True),
        sa.Column("stripe_test_price_id", sa.String(128), nullable=True),
        sa.Column("stripe_production_product_id", sa.String(128), nullable=True),
        sa.Column("stripe_production_price_id", sa.String(128), nullable=True),
        sa.Column("last_deployed_to_production", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_creator_products_tenant_env", "creator_products", ["tenant_id", "environment"])

    # ── product_environment_deployments ───────────────────────────
    op.create_table(
        "product_environment_deployments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("source_environment", sa.String(20), server_default="test"),
        sa.Column("target_environment", sa.String(20), server_default="production"),
        sa.Column("source_product_id", sa.String(128), nullable=True),
        sa.Column("source_price_id", sa.String(128), nullable=True),
        sa.Column("target_product_id", sa.String(128), nullable=True),
        sa.Column("target_price_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("validation_results_json", JSONB, server_default="[]"),
        sa.Column("progress_percentage", sa.Integer, server_default="0"),
        sa.Column("progress_message", sa.Text, server_default=""),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("scheduled_for", sa.DateTime, nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("notification_json", JSONB, server_default="{}"),
        sa.Column("product_name", sa.String(256), server_default=""),
        sa.Column("price", sa.Numeric(12, 2), server_default="0"),
        sa.Column("currency", sa.String(3), server_default="usd"),
        sa.Column("deployed_by", sa.String(128), server_default=""),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("deployed_at", sa.DateTime, nullable=True),
        sa.CheckConstraint("progress_percentage >= 0 AND progress_percentage <= 100",
                           name="ck_deployments_progress_range"),
    )
    op.create_index("ix_deployments_tenant_product", "product_environment_deployments",
                    ["tenant_id", "product_id"])
    op.create_index("ix_deployments_status_scheduled", "product_environment_deployments",
                    ["status", "scheduled_for"])

    # ── environment_audit_log ─────────────────────────────────────
    op.create_table(
        "environment_audit_log",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("environment", sa.String(20), nullable=False),
        sa.Column("operation", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("payload_json", JSONB, server_default="{}"),
        sa.Column("actor", sa.String(128), server_default=""),
        sa.Column("status", sa.String(20), server_default="completed"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_tenant_env_created", "environment_audit_log",
                    ["tenant_id", "environment", "created_at"])


def downgrade() -> None:
    op.drop_table("environment_audit_log")
    op.drop_table("product_environment_deployments")
    op.drop_table("creator_products")
    op.drop_table("tenant_environment_state")
    op.drop_table("environment_configs")
