# coding: utf-8
"""
Pricing calculator for subscription upgrades

Pure: the same (plan, period, first-time) always gives the same quote.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

from config.pricing import (
    FIRST_TIME_DISCOUNT_PERCENT,
    PURCHASABLE_PLANS,
    SUBSCRIPTION_PERIODS,
    get_period_pricing,
)
from src.core.exceptions import InvalidArgument
from src.database.models import SubscriptionTier


CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half up"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceQuote:
    """Price breakdown shown to the user and stored on the payment request"""

    plan: SubscriptionTier
    period_months: int
    original_amount: Decimal
    final_amount: Decimal
    discount_percentage: int
    period_discount: int
    first_time_discount: int

    @property
    def savings(self) -> Decimal:
        return self.original_amount - self.final_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.value,
            "period": self.period_months,
            "original_amount": float(self.original_amount),
            "final_amount": float(self.final_amount),
            "discount_percentage": self.discount_percentage,
            "period_discount": self.period_discount,
            "first_time_discount": self.first_time_discount,
            "savings": float(self.savings),
        }


def validate_plan_period(plan: str, period_months: int) -> SubscriptionTier:
    """
    Check that plan/period is a sold combination

    Raises:
        InvalidArgument: unknown plan or period
    """
    try:
        tier = SubscriptionTier(plan)
    except ValueError:
        raise InvalidArgument(f"Invalid plan: {plan}", field="plan")

    if tier not in PURCHASABLE_PLANS:
        raise InvalidArgument(f"Plan is not purchasable: {plan}", field="plan")

    # bool is an int subclass; reject True/False explicitly
    if isinstance(period_months, bool) or period_months not in SUBSCRIPTION_PERIODS:
        raise InvalidArgument(f"Invalid subscription period: {period_months}", field="period")

    return tier


def compute_price(plan: str, period_months: int, is_first_time: bool) -> PriceQuote:
    """
    Compute the amount due for an upgrade

    The first-time reduction is a flat percentage of the period base price;
    the reported discount_percentage adds the two percentages (not compounded).

    Args:
        plan: starter_trader or pro_trader
        period_months: 1, 3 or 12
        is_first_time: User never completed a paid upgrade

    Returns:
        PriceQuote

    Raises:
        InvalidArgument: unknown plan or period

    Examples:
        >>> compute_price("pro_trader", 12, True).final_amount
        Decimal('630.00')
    """
    tier = validate_plan_period(plan, period_months)
    pricing = get_period_pricing(tier, period_months)

    original = round_money(pricing.base_price)
    first_time = FIRST_TIME_DISCOUNT_PERCENT if is_first_time else 0
    reduction = round_money(original * Decimal(first_time) / Decimal(100))

    return PriceQuote(
        plan=tier,
        period_months=period_months,
        original_amount=original,
        final_amount=round_money(original - reduction),
        discount_percentage=pricing.period_discount + first_time,
        period_discount=pricing.period_discount,
        first_time_discount=first_time,
    )
