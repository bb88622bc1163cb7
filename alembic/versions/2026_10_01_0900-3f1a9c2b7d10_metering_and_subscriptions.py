"""metering_and_subscriptions

Revision ID: 3f1a9c2b7d10
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3f1a9c2b7d10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create directory, metering, pricing and subscription tables."""

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "directory_users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.String(255),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index(
        "ix_directory_users_tenant_active", "directory_users", ["tenant_id", "is_active"]
    )
    op.create_index(
        "ix_directory_users_tenant_email", "directory_users", ["tenant_id", "email"], unique=True
    )

    # Append-only activity log
    op.create_table(
        "user_activity",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("directory_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("activity_type", sa.String(100), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_user_activity_tenant_timestamp", "user_activity", ["tenant_id", "timestamp"]
    )
    op.create_index(
        "ix_user_activity_user_tenant_timestamp",
        "user_activity",
        ["user_id", "tenant_id", "timestamp"],
    )

    op.create_table(
        "mau_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_period", sa.String(7), nullable=False),
        sa.Column("mau_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("users_list", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "billing_period", name="uq_mau_snapshots_tenant_period"),
    )
    op.create_index(
        "ix_mau_snapshots_tenant_period_start", "mau_snapshots", ["tenant_id", "period_start"]
    )

    op.create_table(
        "pricing_config",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("price_per_user", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_maintenance_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("billing_model", sa.String(20), nullable=False, server_default="mau"),
        sa.Column("annual_discount_percent", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("trial_days", sa.Integer(), nullable=False, server_default="14"),
        *_timestamps(),
    )

    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("billing_interval", sa.String(20), nullable=False),
        sa.Column("plan_type", sa.String(20), nullable=False),
        sa.Column("trial_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("limits", sa.JSON(), nullable=False),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column(
            "plan_id", sa.Integer(), sa.ForeignKey("subscription_plans.id"), nullable=False
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_mau_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "ix_subscriptions_account_created", "subscriptions", ["account_id", "created_at", "id"]
    )
    op.create_index(
        "ix_subscriptions_tenant_created", "subscriptions", ["tenant_id", "created_at", "id"]
    )
    op.create_index(
        "ix_subscriptions_status_trial_end", "subscriptions", ["status", "trial_end"]
    )


def downgrade() -> None:
    """Drop all tables created in upgrade."""
    op.drop_table("subscriptions")
    op.drop_table("subscription_plans")
    op.drop_table("pricing_config")
    op.drop_table("mau_snapshots")
    op.drop_table("user_activity")
    op.drop_table("directory_users")
    op.drop_table("tenants")
