# coding: utf-8
"""
Subscription state machine

Access state is always recomputed from stored dates; nothing here writes.
Persistent downgrades are done by the subscription sweep (src/tasks).

    ACTIVE ──(end - now <= 4 days or end passed)──> GRACE_PERIOD
    GRACE_PERIOD ──(now > grace end)──> EXPIRED ──(sweep)──> FREE
    ADMIN: always ACTIVE
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config.limits import get_tier_limits
from config.pricing import plan_display_name
from src.core.enums import SubscriptionState
from src.database.models import SubscriptionTier, User
from src.services.subscription_dates import compute_grace_period_end, days_remaining


# Grace is shown proactively during the last days of a paid period
GRACE_LOOKAHEAD = timedelta(days=4)


def is_grace(now: datetime, subscription_end: datetime, grace_period_end: datetime) -> bool:
    """
    Grace predicate

    True while the hard grace window has not elapsed and the period has
    either lapsed or ends within the next 4 days.
    """
    return now <= grace_period_end and (
        subscription_end < now or subscription_end - now <= GRACE_LOOKAHEAD
    )


def grace_end_for(user: User) -> Optional[datetime]:
    """Stored grace end, or end + 48h when only the end date is known"""
    if user.subscription_end_date is None:
        return None
    return user.grace_period_end_date or compute_grace_period_end(user.subscription_end_date)


def resolve_state(user: User, now: datetime) -> SubscriptionState:
    """
    Current access state of a user

    Args:
        user: User record (read only)
        now: Current time (aware UTC)

    Returns:
        SubscriptionState
    """
    tier = user.tier

    if tier == SubscriptionTier.ADMIN:
        return SubscriptionState.ACTIVE

    if tier == SubscriptionTier.FREE:
        return SubscriptionState.FREE

    end = user.subscription_end_date
    if end is None:
        # Paid tier granted without an end date
        return SubscriptionState.ACTIVE

    if is_grace(now, end, grace_end_for(user)):
        return SubscriptionState.GRACE_PERIOD

    if now <= end:
        return SubscriptionState.ACTIVE

    return SubscriptionState.EXPIRED


def effective_tier(user: User, now: datetime) -> SubscriptionTier:
    """Tier whose limits apply right now (lapsed paid tiers count as free)"""
    state = resolve_state(user, now)
    if SubscriptionState.has_paid_access(state):
        return user.tier
    return SubscriptionTier.FREE


def needs_downgrade(user: User, now: datetime) -> bool:
    """Sweep predicate: paid tier whose grace window has elapsed"""
    return resolve_state(user, now) == SubscriptionState.EXPIRED


def subscription_view(user: User, now: datetime) -> Dict[str, Any]:
    """Read-only subscription summary for the API"""
    state = resolve_state(user, now)
    tier = effective_tier(user, now)
    limits = get_tier_limits(tier)
    grace_end = grace_end_for(user)

    return {
        "tier": user.subscription_tier,
        "tier_name": plan_display_name(user.subscription_tier),
        "effective_tier": tier.value,
        "state": state.value,
        "is_grace_period": state == SubscriptionState.GRACE_PERIOD,
        "subscription_start_date": _iso(user.subscription_start_date),
        "subscription_end_date": _iso(user.subscription_end_date),
        "grace_period_end_date": _iso(grace_end),
        "subscription_period": user.subscription_period,
        "days_remaining": days_remaining(user.subscription_end_date, now),
        "is_first_time_subscriber": user.is_first_time_subscriber,
        "limits": limits,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
