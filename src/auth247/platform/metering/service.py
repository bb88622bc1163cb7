"""
Metering service.

The read side used by dashboards and billing views: live current-month MAU,
billing data for a stored period, and historical trends.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.pricing.service import PricingService
from auth247.platform.clock import Clock, utc_now
from auth247.platform.metering.calculator import MAUCalculator
from auth247.platform.metering.reconciler import BillingReconciler
from auth247.platform.metering.schemas import CurrentMAU, MAUAnalytics, MAUBillingData
from auth247.platform.metering.snapshots import SnapshotStore
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)


class MeteringService:
    """Facade over the calculator, snapshot store and reconciler."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        pricing: PricingService | None = None,
    ):
        self.db = db
        self.clock = clock
        self.pricing = pricing or PricingService(db)
        self.calculator = MAUCalculator(db, clock=clock)
        self.snapshots = SnapshotStore(db, clock=clock)
        self.reconciler = BillingReconciler(
            db, clock=clock, pricing=self.pricing, snapshots=self.snapshots
        )

    async def get_current_mau_for_tenant(self, tenant_id: str) -> CurrentMAU:
        """Live MAU for the current month and what it would bill at today's price."""
        result = await self.calculator.calculate_current(tenant_id)
        config = await self.pricing.get_config()
        projected = await self.reconciler.projected_amount(result.mau_count, config)

        return CurrentMAU(
            tenant_id=tenant_id,
            billing_period=result.billing_period,
            current_mau=result.mau_count,
            projected_billing=projected,
            currency=config.currency,
            last_updated=self.clock(),
        )

    async def get_mau_billing_data(
        self, tenant_id: str, billing_period: str | None = None
    ) -> MAUBillingData | None:
        """Billing data for a stored period (default: current month), None if not computed."""
        return await self.reconciler.get_billing_data(tenant_id, billing_period)

    async def get_mau_analytics(self, tenant_id: str, months: int | None = None) -> MAUAnalytics:
        """Trend of the latest ``months`` snapshots, oldest first."""
        months = months or settings.metering.analytics_default_months
        trend = await self.snapshots.get_trend(tenant_id, months)
        return MAUAnalytics(tenant_id=tenant_id, months=months, trend=trend)


__all__ = ["MeteringService"]
