"""
Monthly reconciliation job.

For every active tenant: count last month's active users, upsert the snapshot,
and cache the count on the tenant's subscription. Tenants are independent;
one tenant's failure or timeout is reported in its result entry and never
stops the others. Re-running the job for the same month overwrites the same
snapshots.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import select

from auth247.platform.billing.money_utils import calculate_billing_amount
from auth247.platform.billing.pricing.models import PricingConfigResponse
from auth247.platform.billing.pricing.service import PricingService
from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.clock import Clock, utc_now
from auth247.platform.directory.models import Tenant
from auth247.platform.metering.calculator import MAUCalculator
from auth247.platform.metering.metrics import MeteringMetrics, get_metering_metrics
from auth247.platform.metering.periods import billing_period_key, previous_month_bounds
from auth247.platform.metering.recorder import SessionFactory
from auth247.platform.metering.schemas import TenantReconciliationResult
from auth247.platform.metering.snapshots import SnapshotStore
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)


class MonthlyReconciliationJob:
    """Batch MAU reconciliation across all active tenants."""

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock = utc_now,
        concurrency: int | None = None,
        tenant_timeout: float | None = None,
        metrics: MeteringMetrics | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.concurrency = max(1, concurrency or settings.metering.job_concurrency)
        self.tenant_timeout = tenant_timeout or settings.metering.tenant_timeout_seconds
        self.metrics = metrics or get_metering_metrics()

    async def run(self) -> list[TenantReconciliationResult]:
        """Reconcile every active tenant; results are in tenant order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Tenant.id).where(Tenant.is_active.is_(True)).order_by(Tenant.id)
            )
            tenant_ids = list(result.scalars().all())
            pricing = await PricingService(session).get_config()

        # Fixed once so a run spanning midnight on the 1st snapshots one month
        period = previous_month_bounds(self.clock())

        logger.info(
            "mau_job.started",
            tenants=len(tenant_ids),
            billing_period=billing_period_key(period[0]),
            concurrency=self.concurrency,
            price_per_user=str(pricing.price_per_user),
        )

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._run_tenant(tenant_id, pricing, period, semaphore) for tenant_id in tenant_ids)
        )

        failed = [r.tenant_id for r in results if r.error is not None]
        logger.info(
            "mau_job.completed",
            tenants=len(results),
            succeeded=len(results) - len(failed),
            failed=len(failed),
            failed_tenants=failed,
        )
        return list(results)

    async def _run_tenant(
        self,
        tenant_id: str,
        pricing: PricingConfigResponse,
        period: tuple[datetime, datetime],
        semaphore: asyncio.Semaphore,
    ) -> TenantReconciliationResult:
        async with semaphore:
            with structlog.contextvars.bound_contextvars(tenant_id=tenant_id):
                try:
                    outcome = await asyncio.wait_for(
                        self.reconcile_tenant(tenant_id, pricing, period),
                        timeout=self.tenant_timeout,
                    )
                except Exception as e:
                    error = str(e) or e.__class__.__name__
                    logger.error("mau_job.tenant_failed", error=error, exc_info=True)
                    self.metrics.record_tenant_result(tenant_id, succeeded=False)
                    return TenantReconciliationResult(
                        tenant_id=tenant_id,
                        mau_count=0,
                        billing_amount=Decimal("0"),
                        error=error,
                    )

        self.metrics.record_tenant_result(tenant_id, succeeded=True)
        return outcome

    async def reconcile_tenant(
        self,
        tenant_id: str,
        pricing: PricingConfigResponse,
        period: tuple[datetime, datetime],
    ) -> TenantReconciliationResult:
        """Snapshot one tenant's ``(start, end)`` period in a dedicated session."""
        with self.metrics.trace_operation("metering.reconcile_tenant", tenant_id=tenant_id):
            async with self.session_factory() as session:
                try:
                    calculation = await MAUCalculator(session, clock=self.clock).calculate(
                        tenant_id, *period
                    )
                    await SnapshotStore(session, clock=self.clock, metrics=self.metrics).save(
                        calculation
                    )
                    await SubscriptionService(
                        session, clock=self.clock, metrics=self.metrics
                    ).update_mau_count(tenant_id, calculation.mau_count)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        billing_amount = calculate_billing_amount(
            calculation.mau_count, pricing.price_per_user, pricing.currency
        )
        logger.info(
            "mau_job.tenant_reconciled",
            billing_period=calculation.billing_period,
            mau_count=calculation.mau_count,
            billing_amount=str(billing_amount),
        )
        return TenantReconciliationResult(
            tenant_id=tenant_id,
            mau_count=calculation.mau_count,
            billing_amount=billing_amount,
            billing_period=calculation.billing_period,
        )


__all__ = ["MonthlyReconciliationJob"]
