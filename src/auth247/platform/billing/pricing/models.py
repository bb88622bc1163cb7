"""
Pricing configuration table and schemas.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from auth247.platform.db import Base, TimestampMixin


class BillingModel(str, Enum):
    """How usage is converted into charges."""

    MAU = "mau"


class BillingInterval(str, Enum):
    """Billing cycle for quotes and plans."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class PricingConfig(Base, TimestampMixin):
    """Singleton row holding the current per-user price."""

    __tablename__ = "pricing_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    price_per_user: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_maintenance_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    billing_model: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BillingModel.MAU.value
    )
    annual_discount_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=14)

    def __repr__(self) -> str:
        return f"<PricingConfig(price_per_user={self.price_per_user}, currency={self.currency})>"


class PricingConfigResponse(BaseModel):
    """Effective pricing configuration."""

    model_config = ConfigDict(from_attributes=True)

    price_per_user: Decimal
    platform_maintenance_fee: Decimal
    currency: str
    billing_model: BillingModel = BillingModel.MAU
    annual_discount_percent: int
    trial_days: int


class PricingConfigUpdate(BaseModel):
    """Partial update of the pricing configuration."""

    model_config = ConfigDict(str_strip_whitespace=True)

    price_per_user: Decimal | None = Field(None, ge=0, description="Price per monthly active user")
    platform_maintenance_fee: Decimal | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    annual_discount_percent: int | None = Field(None, ge=0, le=100)
    trial_days: int | None = Field(None, ge=0)


class PriceQuoteRequest(BaseModel):
    """Request a price for a given number of active users."""

    mau_count: int = Field(ge=0, description="Expected monthly active users")
    billing_interval: BillingInterval = BillingInterval.MONTHLY


class PriceQuote(BaseModel):
    """Itemized price for a number of active users."""

    mau_count: int
    billing_interval: BillingInterval
    billable_users: int
    price_per_user: Decimal
    subtotal: Decimal
    annual_discount_percent: int
    discount_amount: Decimal
    total: Decimal
    billing_model: BillingModel = BillingModel.MAU
    currency: str
    formatted_total: str
