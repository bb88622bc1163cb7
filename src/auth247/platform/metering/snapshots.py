"""
MAU snapshot store.

Exactly one snapshot exists per (tenant, billing period). Saving is an upsert,
so recomputing a period overwrites the earlier figures instead of adding a row.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.clock import Clock, ensure_utc, utc_now
from auth247.platform.metering.metrics import MeteringMetrics, get_metering_metrics
from auth247.platform.metering.models import MauSnapshot
from auth247.platform.metering.periods import shift_period
from auth247.platform.metering.schemas import MAUCalculationResult, MAUTrendPoint

logger = structlog.get_logger(__name__)

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class SnapshotStore:
    """Persistence for monthly MAU snapshots."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        metrics: MeteringMetrics | None = None,
    ):
        self.db = db
        self.clock = clock
        self.metrics = metrics or get_metering_metrics()

    async def save(self, result: MAUCalculationResult) -> MauSnapshot:
        """
        Insert or overwrite the snapshot for ``result``'s tenant and period.

        The caller owns the transaction; nothing is committed here.
        """
        now = self.clock()
        values: dict[str, Any] = {
            "tenant_id": result.tenant_id,
            "billing_period": result.billing_period,
            "period_start": result.period_start,
            "period_end": result.period_end,
            "mau_count": result.mau_count,
            "users_list": [entry.model_dump(mode="json") for entry in result.users_list],
            "updated_at": now,
        }

        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is not None:
            stmt = insert(MauSnapshot).values(created_at=now, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["tenant_id", "billing_period"],
                set_={key: stmt.excluded[key] for key in values},
            )
            await self.db.execute(stmt)
        else:
            await self._save_portable(values, now)

        snapshot = await self.get(result.tenant_id, result.billing_period)
        if snapshot is None:
            raise RuntimeError(
                f"Snapshot {result.tenant_id}/{result.billing_period} missing after upsert"
            )

        self.metrics.record_snapshot(result.tenant_id, result.mau_count)
        logger.info(
            "mau.snapshot_saved",
            tenant_id=result.tenant_id,
            billing_period=result.billing_period,
            mau_count=result.mau_count,
        )
        return snapshot

    async def _save_portable(self, values: dict[str, Any], now: datetime) -> None:
        """Read-then-write upsert for dialects without ON CONFLICT support."""
        for attempt in range(2):
            existing = await self.get(values["tenant_id"], values["billing_period"])
            try:
                async with self.db.begin_nested():
                    if existing is None:
                        self.db.add(MauSnapshot(created_at=now, **values))
                    else:
                        for key, value in values.items():
                            setattr(existing, key, value)
                return
            except IntegrityError:
                # A concurrent writer inserted the same period first
                if attempt:
                    raise
                logger.warning(
                    "mau.snapshot_conflict_retry",
                    tenant_id=values["tenant_id"],
                    billing_period=values["billing_period"],
                )

    async def get(self, tenant_id: str, billing_period: str) -> MauSnapshot | None:
        """Snapshot for a tenant and ``YYYY-MM`` period, or None."""
        stmt = (
            select(MauSnapshot)
            .where(
                MauSnapshot.tenant_id == tenant_id,
                MauSnapshot.billing_period == billing_period,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_trend(self, tenant_id: str, months: int) -> list[MAUTrendPoint]:
        """
        The latest ``months`` snapshots, oldest first, with month-over-month growth.

        Growth compares against the calendar-previous period when that period is
        also in the window and has a non-zero count; otherwise it is None.
        """
        if months <= 0:
            return []

        stmt = (
            select(MauSnapshot)
            .where(MauSnapshot.tenant_id == tenant_id)
            .order_by(MauSnapshot.period_start.desc())
            .limit(months)
        )
        snapshots = list(reversed((await self.db.execute(stmt)).scalars().all()))
        counts = {snapshot.billing_period: snapshot.mau_count for snapshot in snapshots}

        trend: list[MAUTrendPoint] = []
        for snapshot in snapshots:
            previous = counts.get(shift_period(snapshot.billing_period, -1))
            growth: float | None = None
            if previous:
                growth = round((snapshot.mau_count - previous) / previous * 100, 2)
            trend.append(
                MAUTrendPoint(
                    billing_period=snapshot.billing_period,
                    mau_count=snapshot.mau_count,
                    period_start=ensure_utc(snapshot.period_start),
                    period_end=ensure_utc(snapshot.period_end),
                    growth=growth,
                )
            )
        return trend


__all__ = ["SnapshotStore"]
