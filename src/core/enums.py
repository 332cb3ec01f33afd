"""
Core Enums - derived (non-persisted) states shared by services and API.

Defines:
- SubscriptionState: access state computed from stored subscription dates
- GateDecision: outcome of one admission check
"""

from enum import Enum


class SubscriptionState(str, Enum):
    """Access state derived from subscription dates - never stored.

    - ACTIVE: paid period running (admins are always ACTIVE)
    - GRACE_PERIOD: within 48h of end, shown from 4 days before end
    - EXPIRED: grace window elapsed, awaiting downgrade by the sweep
    - FREE: no paid subscription
    """

    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"
    FREE = "free"

    @classmethod
    def has_paid_access(cls, state: "SubscriptionState") -> bool:
        """Paid-tier limits apply in these states."""
        return state in (cls.ACTIVE, cls.GRACE_PERIOD)


class GateDecision(str, Enum):
    """Result of the credit & cooldown admission check."""

    ALLOWED = "allowed"
    MARKET_CLOSED = "market_closed"
    COOLDOWN_ACTIVE = "cooldown_active"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    MONTHLY_LIMIT_REACHED = "monthly_limit_reached"
