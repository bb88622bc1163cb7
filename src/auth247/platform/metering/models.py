"""
Metering database tables.

``user_activity`` is the append-only event log MAU is derived from.
``mau_snapshots`` holds one billing record per tenant and calendar month.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from auth247.platform.clock import utc_now
from auth247.platform.db import Base, TimestampMixin


class UserActivity(Base):
    """A single authenticated action by a user within a tenant."""

    __tablename__ = "user_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("directory_users.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    source_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    activity_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    __table_args__ = (
        Index("ix_user_activity_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_user_activity_user_tenant_timestamp", "user_id", "tenant_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserActivity(user_id={self.user_id}, tenant_id={self.tenant_id}, "
            f"type={self.activity_type})>"
        )


class MauSnapshot(Base, TimestampMixin):
    """Monthly active user count and billing amount for one tenant and month."""

    __tablename__ = "mau_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # "YYYY-MM" of period_start
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)
    mau_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    users_list: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("tenant_id", "billing_period", name="uq_mau_snapshots_tenant_period"),
        Index("ix_mau_snapshots_tenant_period_start", "tenant_id", "period_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<MauSnapshot(tenant_id={self.tenant_id}, period={self.billing_period}, "
            f"mau={self.mau_count})>"
        )
