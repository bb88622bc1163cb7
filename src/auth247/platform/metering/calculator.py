"""
MAU calculator.

Counts the distinct active users of a tenant over a window by aggregating
the activity log. Pure read: the calculator never writes.
"""

from collections.abc import Sequence
from datetime import datetime

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.clock import Clock, ensure_utc, utc_now
from auth247.platform.directory.models import DirectoryUser
from auth247.platform.metering.models import UserActivity
from auth247.platform.metering.periods import (
    billing_period_key,
    current_month_bounds,
    previous_month_bounds,
)
from auth247.platform.metering.schemas import MAUCalculationResult, MAUUserEntry
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)


class MAUCalculator:
    """
    Computes monthly active users from ``user_activity``.

    Only users that are active in the directory count, and when an allow-list
    of billable activity types is configured only those events qualify.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        billable_activity_types: Sequence[str] | None = None,
    ):
        self.db = db
        self.clock = clock
        if billable_activity_types is None:
            billable_activity_types = settings.metering.billable_activity_types
        self.billable_activity_types = list(billable_activity_types)

    async def calculate(
        self, tenant_id: str, period_start: datetime, period_end: datetime
    ) -> MAUCalculationResult:
        """
        Count distinct active users with activity in ``[period_start, period_end]``.

        Both bounds are inclusive. Each user appears once with their latest
        event time and the number of qualifying events.
        """
        period_start = ensure_utc(period_start)
        period_end = ensure_utc(period_end)

        conditions = [
            UserActivity.tenant_id == tenant_id,
            UserActivity.timestamp >= period_start,
            UserActivity.timestamp <= period_end,
            DirectoryUser.is_active.is_(True),
        ]
        if self.billable_activity_types:
            conditions.append(UserActivity.activity_type.in_(self.billable_activity_types))

        stmt = (
            select(
                UserActivity.user_id,
                DirectoryUser.email,
                func.max(UserActivity.timestamp).label("last_activity"),
                func.count(UserActivity.id).label("activity_count"),
            )
            .join(DirectoryUser, DirectoryUser.id == UserActivity.user_id)
            .where(and_(*conditions))
            .group_by(UserActivity.user_id, DirectoryUser.email)
            .order_by(UserActivity.user_id)
        )
        rows = (await self.db.execute(stmt)).all()

        users_list = [
            MAUUserEntry(
                user_id=row.user_id,
                email=row.email,
                last_activity=ensure_utc(row.last_activity),
                activity_count=row.activity_count,
            )
            for row in rows
        ]

        logger.debug(
            "mau.calculated",
            tenant_id=tenant_id,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
            mau_count=len(users_list),
        )

        return MAUCalculationResult(
            tenant_id=tenant_id,
            mau_count=len(users_list),
            period_start=period_start,
            period_end=period_end,
            billing_period=billing_period_key(period_start),
            users_list=users_list,
        )

    async def calculate_current(self, tenant_id: str) -> MAUCalculationResult:
        """MAU for the calendar month containing now."""
        start, end = current_month_bounds(self.clock())
        return await self.calculate(tenant_id, start, end)

    async def calculate_previous(self, tenant_id: str) -> MAUCalculationResult:
        """MAU for the calendar month before the current one."""
        start, end = previous_month_bounds(self.clock())
        return await self.calculate(tenant_id, start, end)


__all__ = ["MAUCalculator"]
