"""
Pricing service.

Reads and updates the per-user price and produces quotes. When no pricing row
exists the configured defaults apply, so billing never blocks on setup.
"""

from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.exceptions import PriceCalculationError
from auth247.platform.billing.money_utils import money_handler
from auth247.platform.billing.pricing.models import (
    BillingInterval,
    BillingModel,
    PriceQuote,
    PricingConfig,
    PricingConfigResponse,
    PricingConfigUpdate,
)
from auth247.platform.logging import log_audit_event
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)


def default_pricing() -> PricingConfigResponse:
    """Pricing built from settings, used until a row is stored."""
    return PricingConfigResponse(
        price_per_user=settings.billing.default_price_per_user,
        platform_maintenance_fee=settings.billing.platform_maintenance_fee,
        currency=settings.billing.default_currency,
        billing_model=BillingModel.MAU,
        annual_discount_percent=settings.billing.annual_discount_percent,
        trial_days=settings.billing.default_trial_days,
    )


class PricingService:
    """Service for the pricing configuration singleton."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self) -> PricingConfig | None:
        stmt = select(PricingConfig).order_by(PricingConfig.id).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_config(self) -> PricingConfigResponse:
        """Stored pricing, or defaults when nothing is stored."""
        row = await self._get_row()
        if row is None:
            return default_pricing()
        return PricingConfigResponse.model_validate(row)

    async def get_price_per_user(self) -> Decimal:
        config = await self.get_config()
        return config.price_per_user

    async def update_config(self, update: PricingConfigUpdate) -> PricingConfigResponse:
        """Apply a partial update, creating the row from defaults if needed."""
        row = await self._get_row()
        if row is None:
            defaults = default_pricing()
            row = PricingConfig(
                price_per_user=defaults.price_per_user,
                platform_maintenance_fee=defaults.platform_maintenance_fee,
                currency=defaults.currency,
                billing_model=defaults.billing_model.value,
                annual_discount_percent=defaults.annual_discount_percent,
                trial_days=defaults.trial_days,
            )
            self.db.add(row)

        changes = update.model_dump(exclude_none=True)
        if "currency" in changes:
            changes["currency"] = changes["currency"].upper()
        for field, value in changes.items():
            setattr(row, field, value)

        await self.db.flush()
        await self.db.refresh(row)

        log_audit_event(
            action="pricing.updated",
            category="billing",
            resource_type="pricing_config",
            resource_id=str(row.id),
            changes={key: str(value) for key, value in changes.items()},
        )
        return PricingConfigResponse.model_validate(row)

    async def calculate_quote(
        self,
        mau_count: int,
        billing_interval: BillingInterval = BillingInterval.MONTHLY,
        config: PricingConfigResponse | None = None,
    ) -> PriceQuote:
        """
        Price ``mau_count`` users.

        Every active user is billable. Yearly billing takes the annual discount
        off the subtotal. Amounts are rounded half-up to the currency's minor unit.
        """
        if mau_count < 0:
            raise PriceCalculationError(
                "MAU count cannot be negative", reason=f"mau_count={mau_count}"
            )

        config = config or await self.get_config()
        currency = config.currency

        subtotal = money_handler.per_user_charge(mau_count, config.price_per_user, currency)
        discount_percent = (
            config.annual_discount_percent if billing_interval == BillingInterval.YEARLY else 0
        )
        discount = money_handler.round_money(
            money_handler.multiply_money(subtotal, Decimal(discount_percent) / Decimal(100))
        )
        total = subtotal - discount

        return PriceQuote(
            mau_count=mau_count,
            billing_interval=billing_interval,
            billable_users=mau_count,
            price_per_user=config.price_per_user,
            subtotal=subtotal.amount,
            annual_discount_percent=discount_percent,
            discount_amount=discount.amount,
            total=total.amount,
            currency=currency,
            formatted_total=money_handler.format_money(total),
        )


__all__ = ["PricingService", "default_pricing"]
