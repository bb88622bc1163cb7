"""
Scheduled billing tasks.

Each task has a plain coroutine that does the work (used by the CLI and
tests) and a Celery wrapper that runs it on a fresh event loop.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog

from auth247.platform.billing.subscriptions.models import TrialSweepResult
from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.celery_app import celery_app
from auth247.platform.clock import Clock, utc_now
from auth247.platform.db import dispose_engine, get_session_maker
from auth247.platform.metering.job import MonthlyReconciliationJob
from auth247.platform.metering.recorder import SessionFactory
from auth247.platform.metering.schemas import TenantReconciliationResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def run_monthly_mau_calculation(
    session_factory: SessionFactory | None = None,
    clock: Clock = utc_now,
) -> list[TenantReconciliationResult]:
    """Snapshot last month's MAU for every active tenant."""
    job = MonthlyReconciliationJob(session_factory or get_session_maker(), clock=clock)
    return await job.run()


async def process_trial_expirations(
    session_factory: SessionFactory | None = None,
    clock: Clock = utc_now,
) -> TrialSweepResult:
    """Move every expired trial back to the free plan."""
    factory = session_factory or get_session_maker()
    async with factory() as session:
        return await SubscriptionService(session, clock=clock).process_trial_expirations()


def run_sync(coro: Awaitable[T]) -> T:
    """Run a coroutine to completion and release pooled connections bound to its loop."""

    async def _runner() -> T:
        try:
            return await coro
        finally:
            await dispose_engine()

    return asyncio.run(_runner())


@celery_app.task(name="metering.run_monthly_mau_calculation")
def run_monthly_mau_calculation_task() -> list[dict[str, Any]]:
    """Periodic task: monthly MAU reconciliation across all tenants."""
    results = run_sync(run_monthly_mau_calculation())
    return [result.model_dump(mode="json") for result in results]


@celery_app.task(name="subscriptions.process_trial_expirations")
def process_trial_expirations_task() -> dict[str, Any]:
    """Periodic task: expire finished trials."""
    return run_sync(process_trial_expirations()).model_dump(mode="json")


__all__ = [
    "run_sync",
    "run_monthly_mau_calculation",
    "process_trial_expirations",
    "run_monthly_mau_calculation_task",
    "process_trial_expirations_task",
]
