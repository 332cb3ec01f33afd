"""
Subscription Service - grace period and downgrade enforcement

This service handles:
- Writing the grace end for paid periods that just lapsed
- Listing subscriptions expiring soon (reminder candidates)
- Downgrading users whose grace period elapsed to FREE

Admins are never selected (queries only look at paid tiers).
"""

from datetime import datetime, UTC
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.limits import get_tier_limits
from src.database import crud
from src.database.models import SubscriptionTier, User
from src.services.subscription_dates import compute_grace_period_end, days_remaining
from src.services.subscription_state import needs_downgrade


REMINDER_WINDOW_DAYS = 7


def downgrade_to_free(user: User, now: datetime) -> None:
    """Reset a user to the free tier and start fresh free counters (caller commits)"""
    limits = get_tier_limits(SubscriptionTier.FREE)

    user.subscription_tier = SubscriptionTier.FREE.value
    user.subscription_end_date = None
    user.subscription_period = None
    user.grace_period_end_date = None
    user.max_daily_credits = limits["daily_limit"]
    user.max_monthly_credits = limits["monthly_limit"]
    user.daily_credits = 0
    user.monthly_credits = 0
    user.last_credit_reset = now


async def run_subscription_sweep(
    session: AsyncSession, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    One pass of subscription enforcement

    Returns:
        {"grace_started": int, "expiring_soon": int, "downgraded": int}
    """
    now = now or datetime.now(UTC)
    results = {"grace_started": 0, "expiring_soon": 0, "downgraded": 0}

    # (a) lapsed without a grace end
    for user in await crud.get_lapsed_users_without_grace(session, now):
        user.grace_period_end_date = compute_grace_period_end(user.subscription_end_date)
        results["grace_started"] += 1
        logger.info(
            f"[SUBSCRIPTION-CHECKER] user={user.id} grace period until "
            f"{user.grace_period_end_date.isoformat()}"
        )
    await session.commit()

    # (b) reminder candidates
    for user in await crud.get_users_expiring_within(session, now, REMINDER_WINDOW_DAYS):
        results["expiring_soon"] += 1
        logger.info(
            f"[SUBSCRIPTION-CHECKER] user={user.id} ({user.email}) {user.subscription_tier} "
            f"expires in {days_remaining(user.subscription_end_date, now)} days"
        )

    # (c) grace elapsed
    for user in await crud.get_users_past_grace(session, now):
        if not needs_downgrade(user, now):
            continue
        previous_tier = user.subscription_tier
        downgrade_to_free(user, now)
        results["downgraded"] += 1
        logger.info(f"[SUBSCRIPTION-CHECKER] user={user.id} downgraded {previous_tier} -> free")
    await session.commit()

    return results
