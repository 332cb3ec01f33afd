"""
Signal generation limits for NTL Signals

Single authoritative table of per-tier credit ceilings and cooldowns.
Consumed by the credit gate, the subscription sweep and every read-only display.
"""

from typing import Dict, Any, Optional

from src.database.models import SubscriptionTier


# ============================================================================
# LIMITS BY TIER
# ============================================================================

# None = unlimited
TIER_LIMITS: Dict[SubscriptionTier, Dict[str, Any]] = {
    SubscriptionTier.FREE: {
        "daily_limit": 2,
        "monthly_limit": 10,
        "cooldown_minutes": 90,
    },
    SubscriptionTier.STARTER_TRADER: {
        "daily_limit": 10,
        "monthly_limit": 60,
        "cooldown_minutes": 30,
    },
    SubscriptionTier.PRO_TRADER: {
        "daily_limit": None,
        "monthly_limit": None,
        "cooldown_minutes": 15,
    },
    SubscriptionTier.ADMIN: {
        "daily_limit": None,
        "monthly_limit": None,
        "cooldown_minutes": 0,
    },
}


# Tier to suggest in a DailyLimitReached message
UPGRADE_PATH = {
    SubscriptionTier.FREE: SubscriptionTier.STARTER_TRADER,
    SubscriptionTier.STARTER_TRADER: SubscriptionTier.PRO_TRADER,
}

TIER_DISPLAY_NAMES = {
    SubscriptionTier.FREE: "Free",
    SubscriptionTier.STARTER_TRADER: "Starter",
    SubscriptionTier.PRO_TRADER: "Pro",
    SubscriptionTier.ADMIN: "Admin",
}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_tier_limits(
    tier: SubscriptionTier,
    table: Optional[Dict[SubscriptionTier, Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Get limits for a specific subscription tier

    Args:
        tier: Subscription tier enum (or its string value)
        table: Alternative limits table (defaults to TIER_LIMITS)

    Returns:
        Dict with daily_limit, monthly_limit, cooldown_minutes
    """
    table = table or TIER_LIMITS
    try:
        tier = SubscriptionTier(tier)
    except ValueError:
        tier = SubscriptionTier.FREE
    return table.get(tier, table[SubscriptionTier.FREE])


def daily_limit_message(
    tier: SubscriptionTier,
    table: Optional[Dict[SubscriptionTier, Dict[str, Any]]] = None,
) -> str:
    """
    Build the user-facing message for a reached daily ceiling

    Args:
        tier: Effective tier of the user
        table: Alternative limits table

    Returns:
        Message with an upgrade hint when a higher tier exists
    """
    tier = SubscriptionTier(tier)
    limit = get_tier_limits(tier, table)["daily_limit"]
    name = TIER_DISPLAY_NAMES.get(tier, "Free")
    message = f"Daily limit reached. {name} users get {limit} signals per day."

    next_tier = UPGRADE_PATH.get(tier)
    if next_tier is not None:
        next_limit = get_tier_limits(next_tier, table)["daily_limit"]
        amount = "unlimited signals" if next_limit is None else f"{next_limit} signals per day"
        message += f" Upgrade to {TIER_DISPLAY_NAMES[next_tier]} for {amount}."

    return message


def get_limits_table() -> Dict[str, Dict[str, Any]]:
    """
    Read-only view of the limits table for display (JSON-friendly)

    Returns:
        {"free": {"daily_limit": 2, "monthly_limit": 10, "cooldown_minutes": 90, "unlimited": False}, ...}
    """
    return {
        tier.value: {**limits, "unlimited": limits["daily_limit"] is None}
        for tier, limits in TIER_LIMITS.items()
    }


if __name__ == "__main__":
    for tier, limits in TIER_LIMITS.items():
        daily = limits["daily_limit"] if limits["daily_limit"] is not None else "∞"
        monthly = limits["monthly_limit"] if limits["monthly_limit"] is not None else "∞"
        print(f"{tier.value:<16} daily={daily:<4} monthly={monthly:<4} cooldown={limits['cooldown_minutes']}m")
