"""
Tests for billing reconciliation and the metering read service.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from auth247.platform.billing.exceptions import InvalidBillingPeriodError
from auth247.platform.billing.pricing.models import PricingConfigUpdate
from auth247.platform.billing.pricing.service import PricingService
from auth247.platform.metering.reconciler import BillingReconciler
from auth247.platform.metering.service import MeteringService
from auth247.platform.metering.snapshots import SnapshotStore
from tests.factories import create_tenant, create_users, make_calculation, record_activity

pytestmark = pytest.mark.integration


class TestBillingReconciler:
    """Test billing data derived from snapshots."""

    async def test_billing_amount_from_snapshot(self, async_session, clock, metrics):
        """Test 250 users at the default 0.89 bill 222.50."""
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-02", 250))
        await async_session.commit()

        data = await BillingReconciler(async_session, clock=clock, snapshots=store).get_billing_data(
            "acme", "2025-02"
        )

        assert data is not None
        assert data.mau_count == 250
        assert data.price_per_user == Decimal("0.89")
        assert data.total_amount == Decimal("222.50")
        assert data.currency == "USD"
        assert data.formatted_total is not None
        assert "222.50" in data.formatted_total

    async def test_change_against_previous_month(self, async_session, clock, metrics):
        """Test the month-over-month change uses the previous snapshot."""
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-01", 100))
        await store.save(make_calculation("acme", "2025-02", 120))
        await async_session.commit()

        data = await BillingReconciler(async_session, clock=clock, snapshots=store).get_billing_data(
            "acme", "2025-02"
        )

        assert data.previous_mau_count == 100
        assert data.mau_change == 20

    async def test_first_month_has_zero_previous(self, async_session, clock, metrics):
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-02", 7))
        await async_session.commit()

        data = await BillingReconciler(async_session, clock=clock, snapshots=store).get_billing_data(
            "acme", "2025-02"
        )

        assert data.previous_mau_count == 0
        assert data.mau_change == 7

    async def test_missing_period_returns_none(self, async_session, clock):
        """Test a period that was never computed yields None."""
        reconciler = BillingReconciler(async_session, clock=clock)
        assert await reconciler.get_billing_data("acme", "2030-01") is None

    async def test_defaults_to_current_month(self, async_session, clock, metrics):
        """Test omitting the period targets the clock's month."""
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-03", 4))
        await async_session.commit()

        data = await BillingReconciler(async_session, clock=clock, snapshots=store).get_billing_data(
            "acme"
        )

        assert data.billing_period == "2025-03"
        assert data.total_amount == Decimal("3.56")

    async def test_invalid_period_rejected(self, async_session, clock):
        reconciler = BillingReconciler(async_session, clock=clock)
        with pytest.raises(InvalidBillingPeriodError):
            await reconciler.get_billing_data("acme", "2025-00")

    async def test_unpadded_period_rejected(self, async_session, clock):
        """Test a single-digit month is rejected instead of missing the snapshot."""
        reconciler = BillingReconciler(async_session, clock=clock)
        with pytest.raises(InvalidBillingPeriodError):
            await reconciler.get_billing_data("acme", "2030-1")

    async def test_uses_stored_price(self, async_session, clock, metrics):
        """Test a configured price replaces the default."""
        await PricingService(async_session).update_config(
            PricingConfigUpdate(price_per_user=Decimal("1.25"))
        )
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-02", 10))
        await async_session.commit()

        data = await BillingReconciler(async_session, clock=clock, snapshots=store).get_billing_data(
            "acme", "2025-02"
        )

        assert data.total_amount == Decimal("12.50")


class TestMeteringService:
    """Test the metering read facade."""

    async def test_current_mau_and_projection(self, async_session, clock):
        """Test live current-month MAU with its projected bill."""
        await create_tenant(async_session, "acme")
        users = await create_users(async_session, "acme", 3)
        for user in users:
            await record_activity(async_session, user, datetime(2025, 3, 2, tzinfo=UTC))
        await async_session.commit()

        current = await MeteringService(async_session, clock=clock).get_current_mau_for_tenant(
            "acme"
        )

        assert current.current_mau == 3
        assert current.billing_period == "2025-03"
        assert current.projected_billing == Decimal("2.67")
        assert current.last_updated == clock()

    async def test_analytics_default_window(self, async_session, clock, metrics):
        """Test analytics falls back to the configured window length."""
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        await store.save(make_calculation("acme", "2025-01", 10))
        await store.save(make_calculation("acme", "2025-02", 15))
        await async_session.commit()

        analytics = await MeteringService(async_session, clock=clock).get_mau_analytics("acme")

        assert analytics.months == 6
        assert [point.mau_count for point in analytics.trend] == [10, 15]
        assert analytics.trend[1].growth == 50.0
