# coding: utf-8
"""
Subscription date arithmetic

Calendar-month addition (Jan 31 + 1 month = Feb 28/29), the fixed 48h grace
offset, billing cycles anchored on the subscription start, and local-day
helpers for the daily credit rollover.
"""
from datetime import date, datetime, timedelta, UTC
from typing import Optional, Tuple

import pytz
from dateutil.relativedelta import relativedelta

from config.config import CREDIT_RESET_TIMEZONE
from config.pricing import GRACE_PERIOD_HOURS
from src.core.exceptions import InvalidArgument


def compute_end_date(start: datetime, period_months: int) -> datetime:
    """
    End of a paid period

    Args:
        start: Period start
        period_months: Number of calendar months (>= 1)

    Returns:
        start + period_months calendar months, clamped to the last day of the month

    Examples:
        >>> compute_end_date(datetime(2024, 1, 31, tzinfo=UTC), 1)
        datetime.datetime(2024, 2, 29, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if isinstance(period_months, bool) or not isinstance(period_months, int) or period_months < 1:
        raise InvalidArgument(f"Invalid subscription period: {period_months}", field="period")
    return start + relativedelta(months=period_months)


def compute_grace_period_end(subscription_end: datetime) -> datetime:
    """Grace end is always subscription end + 48 hours"""
    return subscription_end + timedelta(hours=GRACE_PERIOD_HOURS)


def billing_cycle(anchor: datetime, now: datetime) -> Tuple[datetime, datetime]:
    """
    Billing cycle containing `now`

    Cycles are [anchor + k months, anchor + (k+1) months). Offsets are always
    taken from the anchor so a 31st anchor does not drift to the 28th.

    Args:
        anchor: Subscription start (or account creation)
        now: Current time

    Returns:
        (cycle_start, cycle_end)
    """
    if now < anchor:
        return anchor, anchor + relativedelta(months=1)

    # Jump close to the answer, then correct for month-length clamping
    months = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    months = max(months - 1, 0)
    while anchor + relativedelta(months=months + 1) <= now:
        months += 1

    return anchor + relativedelta(months=months), anchor + relativedelta(months=months + 1)


def get_timezone(tz_name: str = CREDIT_RESET_TIMEZONE):
    """pytz timezone for the credit rollover"""
    return pytz.timezone(tz_name)


def local_date(moment: datetime, tz_name: str = CREDIT_RESET_TIMEZONE) -> date:
    """Calendar date of `moment` in the rollover timezone"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(get_timezone(tz_name)).date()


def calendar_days_between(
    start: datetime, end: datetime, tz_name: str = CREDIT_RESET_TIMEZONE
) -> int:
    """Number of local calendar days from start to end (negative if end is earlier)"""
    return (local_date(end, tz_name) - local_date(start, tz_name)).days


def days_remaining(end: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days left until `end` (0 when passed, None when open-ended)"""
    if end is None:
        return None
    return max((end - now).days, 0)
