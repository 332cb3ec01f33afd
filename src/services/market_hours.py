# coding: utf-8
"""
Gold (XAUUSD) market hours

The market trades from Sunday 22:00 to Friday 21:00 in MARKET_TIMEZONE and is
closed all of Saturday. Friday 21:00 itself is still open.
"""
from datetime import datetime, UTC
from typing import Any, Dict

from config.config import MARKET_TIMEZONE
from src.services.subscription_dates import get_timezone


SUNDAY_OPEN_HOUR = 22
FRIDAY_CLOSE_HOUR = 21


def is_market_open(now: datetime, tz_name: str = MARKET_TIMEZONE) -> bool:
    """
    Check whether XAUUSD is trading at `now`

    Args:
        now: Moment to check (naive values are taken as UTC)
        tz_name: Timezone the trading hours are defined in

    Examples:
        >>> is_market_open(datetime(2024, 6, 15, 12, 0, tzinfo=UTC))  # Saturday
        False
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    local = now.astimezone(get_timezone(tz_name))
    weekday = local.weekday()  # Monday = 0

    if weekday == 5:
        return False
    if weekday == 6:
        return local.hour >= SUNDAY_OPEN_HOUR
    if weekday == 4:
        return local.hour < FRIDAY_CLOSE_HOUR or (
            local.hour == FRIDAY_CLOSE_HOUR and local.minute == 0
        )
    return True


def market_status(now: datetime, tz_name: str = MARKET_TIMEZONE) -> Dict[str, Any]:
    """Public view of the market hours check"""
    is_open = is_market_open(now, tz_name)
    return {
        "is_open": is_open,
        "timezone": tz_name,
        "message": "Market is currently open" if is_open else "Market is currently closed",
        "checked_at": now.isoformat(),
    }
