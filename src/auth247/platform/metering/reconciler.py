"""
Billing reconciler.

Turns a stored snapshot into a billed amount at the current per-user price and
compares it with the snapshot of the month before.
"""

from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.money_utils import (
    calculate_billing_amount,
    create_money,
    format_money,
)
from auth247.platform.billing.pricing.models import PricingConfigResponse
from auth247.platform.billing.pricing.service import PricingService
from auth247.platform.clock import Clock, utc_now
from auth247.platform.metering.periods import (
    billing_period_key,
    parse_billing_period,
    shift_period,
)
from auth247.platform.metering.schemas import MAUBillingData
from auth247.platform.metering.snapshots import SnapshotStore

logger = structlog.get_logger(__name__)


class BillingReconciler:
    """Derives billing data from MAU snapshots."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        pricing: PricingService | None = None,
        snapshots: SnapshotStore | None = None,
    ):
        self.db = db
        self.clock = clock
        self.pricing = pricing or PricingService(db)
        self.snapshots = snapshots or SnapshotStore(db, clock=clock)

    async def get_billing_data(
        self,
        tenant_id: str,
        billing_period: str | None = None,
        config: PricingConfigResponse | None = None,
    ) -> MAUBillingData | None:
        """
        Billing data for a tenant and ``YYYY-MM`` period (default: current month).

        Returns None when the period has no snapshot yet, which is distinct
        from a computed count of zero.
        """
        target_period = billing_period or billing_period_key(self.clock())
        parse_billing_period(target_period)

        snapshot = await self.snapshots.get(tenant_id, target_period)
        if snapshot is None:
            logger.debug("mau.billing_data_missing", tenant_id=tenant_id, period=target_period)
            return None

        previous = await self.snapshots.get(tenant_id, shift_period(target_period, -1))
        previous_mau_count = previous.mau_count if previous else 0

        config = config or await self.pricing.get_config()
        total_amount = calculate_billing_amount(
            snapshot.mau_count, config.price_per_user, config.currency
        )

        return MAUBillingData(
            tenant_id=tenant_id,
            billing_period=target_period,
            mau_count=snapshot.mau_count,
            price_per_user=config.price_per_user,
            total_amount=total_amount,
            currency=config.currency,
            previous_mau_count=previous_mau_count,
            mau_change=snapshot.mau_count - previous_mau_count,
            formatted_total=format_money(create_money(total_amount, config.currency)),
        )

    async def projected_amount(
        self, mau_count: int, config: PricingConfigResponse | None = None
    ) -> Decimal:
        """Amount ``mau_count`` users would be billed at the current price."""
        config = config or await self.pricing.get_config()
        return calculate_billing_amount(mau_count, config.price_per_user, config.currency)


__all__ = ["BillingReconciler"]
