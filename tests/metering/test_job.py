"""
Tests for the monthly MAU reconciliation job.

Tests cover:
- Snapshots and subscription counters for every active tenant
- Per-tenant failure and timeout isolation
- Idempotent re-runs
"""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.metering.job import MonthlyReconciliationJob
from auth247.platform.metering.models import MauSnapshot
from auth247.platform.metering.snapshots import SnapshotStore
from tests.factories import create_tenant, create_users, record_activity

pytestmark = pytest.mark.integration


async def seed_tenants(session, activity: dict[str, int]) -> None:
    """Create one active tenant per entry with that many users active in February."""
    for tenant_id, user_count in activity.items():
        await create_tenant(session, tenant_id)
        for user in await create_users(session, tenant_id, user_count):
            await record_activity(session, user, datetime(2025, 2, 10, tzinfo=UTC))
    await session.commit()


def make_job(session_factory, clock, metrics, **kwargs) -> MonthlyReconciliationJob:
    # One shared SQLite connection: tenants must run one at a time
    return MonthlyReconciliationJob(
        session_factory, clock=clock, concurrency=1, metrics=metrics, **kwargs
    )


class TestMonthlyJob:
    """Test the batch run across tenants."""

    async def test_snapshots_every_active_tenant(
        self, async_session, session_factory, clock, metrics
    ):
        """Test each active tenant gets last month's snapshot and amount."""
        await seed_tenants(async_session, {"t1": 2, "t2": 5})
        await create_tenant(async_session, "dormant", is_active=False)
        await async_session.commit()

        results = await make_job(session_factory, clock, metrics).run()

        assert [r.tenant_id for r in results] == ["t1", "t2"]
        assert all(r.succeeded for r in results)
        assert [r.mau_count for r in results] == [2, 5]
        assert results[0].billing_amount == Decimal("1.78")
        assert results[0].billing_period == "2025-02"

        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        assert (await store.get("t1", "2025-02")).mau_count == 2
        assert (await store.get("t2", "2025-02")).mau_count == 5
        assert await store.get("dormant", "2025-02") is None

    async def test_updates_subscription_mau_count(
        self, async_session, session_factory, clock, metrics
    ):
        """Test the tenant's current subscription caches the new count."""
        await seed_tenants(async_session, {"t1": 3})
        service = SubscriptionService(async_session, clock=clock, metrics=metrics)
        await service.create_free_subscription("owner-1", tenant_id="t1")

        await make_job(session_factory, clock, metrics).run()

        async with session_factory() as session:
            subscription = await SubscriptionService(session, clock=clock).get_user_subscription(
                "owner-1"
            )
        assert subscription.last_mau_count == 3

    async def test_failed_tenant_does_not_stop_batch(
        self, async_session, session_factory, clock, metrics, monkeypatch
    ):
        """Test a failure is reported for its tenant and the others still complete."""
        await seed_tenants(async_session, {"t1": 1, "t2": 2, "t3": 3})
        original = SubscriptionService.update_mau_count

        async def failing_update(self, tenant_id, mau_count):
            if tenant_id == "t2":
                raise RuntimeError("subscription store unavailable")
            return await original(self, tenant_id, mau_count)

        monkeypatch.setattr(SubscriptionService, "update_mau_count", failing_update)

        results = await make_job(session_factory, clock, metrics).run()

        assert len(results) == 3
        failed = results[1]
        assert failed.tenant_id == "t2"
        assert failed.error == "subscription store unavailable"
        assert failed.mau_count == 0
        assert failed.billing_amount == Decimal("0")
        assert results[0].succeeded and results[0].mau_count == 1
        assert results[2].succeeded and results[2].mau_count == 3

        # The failed tenant's snapshot was rolled back with the rest of its work
        store = SnapshotStore(async_session, clock=clock, metrics=metrics)
        assert await store.get("t2", "2025-02") is None
        assert await store.get("t3", "2025-02") is not None

    async def test_slow_tenant_times_out(
        self, async_session, session_factory, clock, metrics, monkeypatch
    ):
        """Test a tenant exceeding its time budget is reported as failed."""
        await seed_tenants(async_session, {"t1": 1, "t2": 1})
        original = MonthlyReconciliationJob.reconcile_tenant

        async def slow_reconcile(self, tenant_id, pricing, period):
            if tenant_id == "t1":
                await asyncio.sleep(5)
            return await original(self, tenant_id, pricing, period)

        monkeypatch.setattr(MonthlyReconciliationJob, "reconcile_tenant", slow_reconcile)

        results = await make_job(session_factory, clock, metrics, tenant_timeout=0.05).run()

        assert results[0].tenant_id == "t1"
        assert results[0].error == "TimeoutError"
        assert results[1].succeeded

    async def test_rerun_is_idempotent(self, async_session, session_factory, clock, metrics):
        """Test running the job twice leaves one snapshot per tenant and period."""
        await seed_tenants(async_session, {"t1": 2})
        job = make_job(session_factory, clock, metrics)

        await job.run()
        second = await job.run()

        count = await async_session.scalar(
            select(func.count()).select_from(MauSnapshot).where(MauSnapshot.tenant_id == "t1")
        )
        assert count == 1
        assert second[0].mau_count == 2

    async def test_no_tenants(self, session_factory, clock, metrics):
        assert await make_job(session_factory, clock, metrics).run() == []

    async def test_period_fixed_for_whole_run(
        self, async_session, session_factory, clock, metrics, monkeypatch
    ):
        """Test tenants reached after the month rolls over still get the same period."""
        await seed_tenants(async_session, {"t1": 1, "t2": 1})
        original = MonthlyReconciliationJob.reconcile_tenant

        async def roll_over_after_first(self, tenant_id, pricing, period):
            result = await original(self, tenant_id, pricing, period)
            clock.set(datetime(2025, 4, 1, 0, 0, 1, tzinfo=UTC))
            return result

        monkeypatch.setattr(MonthlyReconciliationJob, "reconcile_tenant", roll_over_after_first)

        results = await make_job(session_factory, clock, metrics).run()

        assert [r.billing_period for r in results] == ["2025-02", "2025-02"]
        assert [r.mau_count for r in results] == [1, 1]
