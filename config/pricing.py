"""
Pricing configuration for NTL Signals subscriptions

All prices in USD
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Tuple

from src.database.models import SubscriptionTier


@dataclass(frozen=True)
class PeriodPricing:
    """Price of one plan for one billing period"""

    plan: SubscriptionTier
    period_months: int
    base_price: Decimal  # USD, period discount already applied
    period_discount: int  # % vs paying monthly


# Plans that can be purchased (admin/free are never sold)
PURCHASABLE_PLANS = (SubscriptionTier.STARTER_TRADER, SubscriptionTier.PRO_TRADER)

# Allowed billing periods in months
SUBSCRIPTION_PERIODS = (1, 3, 12)

# Extra one-time reduction for users who never completed a paid upgrade
FIRST_TIME_DISCOUNT_PERCENT = 10

# Loyalty reward for a fully reviewed billing cycle
REVIEW_DISCOUNT_PERCENT = 6

# Paid access retained after the subscription end date
GRACE_PERIOD_HOURS = 48


SUBSCRIPTION_PRICING: Dict[Tuple[SubscriptionTier, int], PeriodPricing] = {
    (SubscriptionTier.STARTER_TRADER, 1): PeriodPricing(
        plan=SubscriptionTier.STARTER_TRADER,
        period_months=1,
        base_price=Decimal("49.00"),
        period_discount=0,
    ),
    (SubscriptionTier.STARTER_TRADER, 3): PeriodPricing(
        plan=SubscriptionTier.STARTER_TRADER,
        period_months=3,
        base_price=Decimal("117.00"),
        period_discount=20,
    ),
    (SubscriptionTier.STARTER_TRADER, 12): PeriodPricing(
        plan=SubscriptionTier.STARTER_TRADER,
        period_months=12,
        base_price=Decimal("319.00"),
        period_discount=45,
    ),
    (SubscriptionTier.PRO_TRADER, 1): PeriodPricing(
        plan=SubscriptionTier.PRO_TRADER,
        period_months=1,
        base_price=Decimal("99.00"),
        period_discount=0,
    ),
    (SubscriptionTier.PRO_TRADER, 3): PeriodPricing(
        plan=SubscriptionTier.PRO_TRADER,
        period_months=3,
        base_price=Decimal("237.00"),
        period_discount=20,
    ),
    (SubscriptionTier.PRO_TRADER, 12): PeriodPricing(
        plan=SubscriptionTier.PRO_TRADER,
        period_months=12,
        base_price=Decimal("700.00"),
        period_discount=45,
    ),
}


PLAN_DISPLAY_NAMES = {
    SubscriptionTier.STARTER_TRADER: "Starter Trader",
    SubscriptionTier.PRO_TRADER: "Pro Trader",
    SubscriptionTier.ADMIN: "Admin",
    SubscriptionTier.FREE: "Free",
}


# Helper functions
def get_period_pricing(plan: SubscriptionTier, period_months: int) -> PeriodPricing:
    """
    Get table row for plan/period

    Raises:
        KeyError: if the combination is not sold
    """
    return SUBSCRIPTION_PRICING[(SubscriptionTier(plan), period_months)]


def plan_display_name(plan: str) -> str:
    """Human name of a plan ("Starter Trader", "Pro Trader", ...)"""
    try:
        return PLAN_DISPLAY_NAMES[SubscriptionTier(plan)]
    except ValueError:
        return str(plan)


def period_display_text(months: int) -> str:
    """Human text for a billing period ("1 Month", "3 Months", "1 Year")"""
    if months == 1:
        return "1 Month"
    if months == 12:
        return "1 Year"
    return f"{months} Months"


def get_pricing_table() -> Dict[str, Dict[str, Dict[str, object]]]:
    """
    Read-only pricing table for display (JSON-friendly)

    Returns:
        {"starter_trader": {"1": {"price": 49.0, "discount": 0}, ...}, ...}
    """
    table: Dict[str, Dict[str, Dict[str, object]]] = {}
    for (plan, months), pricing in SUBSCRIPTION_PRICING.items():
        table.setdefault(plan.value, {})[str(months)] = {
            "price": float(pricing.base_price),
            "discount": pricing.period_discount,
            "label": period_display_text(months),
        }
    return table
