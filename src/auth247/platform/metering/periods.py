"""
Calendar-month billing periods.

Every period starts at 00:00:00 UTC on the first day of a month and ends at
the last representable instant of its last day, so consecutive periods tile
time with no gap and no overlap. Period keys are ``YYYY-MM``.
"""

import calendar
import re
from datetime import UTC, datetime, timedelta

from auth247.platform.billing.exceptions import InvalidBillingPeriodError
from auth247.platform.clock import ensure_utc

BILLING_PERIOD_FORMAT = "%Y-%m"
BILLING_PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Return the inclusive ``(start, end)`` instants of a calendar month in UTC."""
    if not 1 <= month <= 12:
        raise InvalidBillingPeriodError(
            f"Invalid month {month} for year {year}", year=year, month=month
        )

    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=UTC)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=UTC)
    return start, end


def current_month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Bounds of the month containing ``now``."""
    now = ensure_utc(now)
    return month_bounds(now.year, now.month)


def previous_month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Bounds of the month before the one containing ``now``."""
    start, _ = current_month_bounds(now)
    last_of_previous = start - timedelta(microseconds=1)
    return month_bounds(last_of_previous.year, last_of_previous.month)


def billing_period_key(value: datetime) -> str:
    """``YYYY-MM`` key of the month containing ``value``."""
    return ensure_utc(value).strftime(BILLING_PERIOD_FORMAT)


def parse_billing_period(key: str) -> tuple[int, int]:
    """Parse a zero-padded ``YYYY-MM`` key into ``(year, month)``."""
    invalid = InvalidBillingPeriodError(
        f"Invalid billing period {key!r}, expected YYYY-MM", year=0, month=0
    )
    # strptime alone accepts single-digit months such as "2030-1"
    if BILLING_PERIOD_PATTERN.match(key) is None:
        raise invalid
    try:
        parsed = datetime.strptime(key, BILLING_PERIOD_FORMAT)
    except ValueError:
        raise invalid from None
    return parsed.year, parsed.month


def shift_period(key: str, months: int) -> str:
    """Move a period key forward (or backward, with a negative offset) by whole months."""
    year, month = parse_billing_period(key)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def period_bounds(key: str) -> tuple[datetime, datetime]:
    """Bounds of the month named by a period key."""
    return month_bounds(*parse_billing_period(key))


def add_months(value: datetime, months: int) -> datetime:
    """Same wall-clock time ``months`` later, clamped to the target month's last day."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


__all__ = [
    "BILLING_PERIOD_FORMAT",
    "month_bounds",
    "current_month_bounds",
    "previous_month_bounds",
    "billing_period_key",
    "parse_billing_period",
    "shift_period",
    "period_bounds",
    "add_months",
]
