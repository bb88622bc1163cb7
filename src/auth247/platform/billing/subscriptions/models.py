"""
Subscription plan and subscription tables, plus their API schemas.

Subscription history is kept by inserting rows. The current subscription of
an account is its most recently created row, ties broken by insertion id.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from auth247.platform.clock import ensure_utc
from auth247.platform.db import Base, TimestampMixin

UNLIMITED = -1


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    FREE = "free"
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


NON_TERMINAL_STATUSES = (
    SubscriptionStatus.FREE.value,
    SubscriptionStatus.TRIAL.value,
    SubscriptionStatus.ACTIVE.value,
)


class PlanType(str, Enum):
    FREE = "free"
    PAID = "paid"


class SubscriptionPlan(Base, TimestampMixin):
    """A purchasable (or free) plan with limits and feature flags."""

    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    billing_interval: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False, default=PlanType.PAID.value)
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    limits: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(name={self.name}, price={self.price})>"


class Subscription(Base, TimestampMixin):
    """One row of an account's subscription history."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscription_plans.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_mau_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_subscriptions_account_created", "account_id", "created_at", "id"),
        Index("ix_subscriptions_tenant_created", "tenant_id", "created_at", "id"),
        Index("ix_subscriptions_status_trial_end", "status", "trial_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(account_id={self.account_id}, plan_id={self.plan_id}, "
            f"status={self.status})>"
        )


# ============================================================
# Typed plan limits and features
# ============================================================


class PlanLimits(BaseModel):
    """Numeric caps of a plan. ``-1`` means unlimited."""

    model_config = ConfigDict(extra="ignore")

    max_users: int = 10
    max_applications: int = 2
    storage_gb: float = 1
    api_request_limit: int = 10000


class PlanFeatures(BaseModel):
    """Feature flags of a plan."""

    model_config = ConfigDict(extra="ignore")

    sso: bool = False
    support: bool = False
    analytics: bool = False
    custom_branding: bool = False
    audit_logs: bool = False
    api_access: bool = False
    custom_integrations: bool = False


# ============================================================
# API schemas
# ============================================================


class PlanResponse(BaseModel):
    """Subscription plan as shown to customers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    display_name: str
    description: str | None = None
    price: Decimal
    currency: str
    billing_interval: str
    plan_type: PlanType
    trial_days: int
    limits: PlanLimits
    features: PlanFeatures
    sort_order: int


class SubscriptionResponse(BaseModel):
    """A subscription row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: str
    tenant_id: str | None = None
    plan_id: int
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    trial_end: datetime | None = None
    trial_used: bool
    cancel_at_period_end: bool
    canceled_at: datetime | None = None
    last_mau_count: int
    created_at: datetime

    @field_validator(
        "current_period_start",
        "current_period_end",
        "trial_end",
        "canceled_at",
        "created_at",
    )
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        """Report every instant in UTC."""
        return ensure_utc(v) if v is not None else None


class SubscriptionWithPlan(SubscriptionResponse):
    """A subscription row together with its plan."""

    plan: PlanResponse


class SubscriptionLimits(BaseModel):
    """Effective caps and features for an account."""

    plan_name: str
    max_users: int
    max_applications: int
    storage_gb: float
    api_request_limit: int
    features: PlanFeatures


class ActionCheckRequest(BaseModel):
    """Ask whether an account may perform an action given its current usage."""

    action: str = Field(min_length=1, description="create_user, create_application, api_request")
    current_count: int = Field(ge=0, description="Current usage for the action's limit")


class ActionCheck(BaseModel):
    """Result of a limit check; ``limit`` is -1 when uncapped."""

    allowed: bool
    limit: int


class PlanSelectionRequest(BaseModel):
    """Switch an account to a named plan."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_name: str = Field(min_length=1)
    tenant_id: str | None = None


class TrialStartRequest(BaseModel):
    tenant_id: str | None = None


class TrialSweepResult(BaseModel):
    """Outcome of one run of the trial expiration sweep."""

    processed: int = 0
    expired_accounts: list[str] = Field(default_factory=list)
    # no longer on a trial by the time the sweep reached them
    skipped_accounts: list[str] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)
