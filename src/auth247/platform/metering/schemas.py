"""
Pydantic schemas for usage metering.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = str | int | float | bool | None


class MAUUserEntry(BaseModel):
    """One distinct active user within a metering window."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int = Field(description="Directory user ID")
    email: str | None = Field(None, description="User email at calculation time")
    last_activity: datetime = Field(description="Latest qualifying event in the window")
    activity_count: int = Field(ge=1, description="Qualifying events in the window")


class MAUCalculationResult(BaseModel):
    """Distinct active users of a tenant over a window."""

    tenant_id: str
    mau_count: int = Field(ge=0)
    period_start: datetime
    period_end: datetime
    billing_period: str = Field(description="YYYY-MM of period_start")
    users_list: list[MAUUserEntry] = Field(default_factory=list)


class MAUTrendPoint(BaseModel):
    """A snapshot in a trend window with growth against the previous month."""

    billing_period: str
    mau_count: int
    period_start: datetime
    period_end: datetime
    growth: float | None = Field(
        None, description="Percent change against the previous month, null when unknown"
    )


class MAUBillingData(BaseModel):
    """Billed amount for a tenant and period, compared to the period before."""

    tenant_id: str
    billing_period: str
    mau_count: int
    price_per_user: Decimal
    total_amount: Decimal
    currency: str
    previous_mau_count: int = 0
    mau_change: int = 0
    formatted_total: str | None = None


class CurrentMAU(BaseModel):
    """Live current-month figures for dashboards."""

    tenant_id: str
    billing_period: str
    current_mau: int
    projected_billing: Decimal
    currency: str
    last_updated: datetime


class MAUAnalytics(BaseModel):
    """Historical MAU trend for charts."""

    tenant_id: str
    months: int
    trend: list[MAUTrendPoint]


class TenantReconciliationResult(BaseModel):
    """Outcome of the monthly job for one tenant."""

    tenant_id: str
    mau_count: int = 0
    billing_amount: Decimal = Decimal("0")
    billing_period: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ActivityTrackRequest(BaseModel):
    """Schema for recording a user activity event."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: int = Field(description="Directory user ID")
    tenant_id: str = Field(min_length=1, description="Tenant the user acted in")
    activity_type: str = Field(min_length=1, max_length=100, description="e.g. login, api_call")
    metadata: dict[str, MetadataValue] | None = Field(None, description="Free-form event details")


class ActivityTrackResponse(BaseModel):
    """Acknowledgement that an event was accepted for recording."""

    accepted: bool = True
