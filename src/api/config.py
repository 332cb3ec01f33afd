"""
Config API Endpoints
Public endpoints for pricing and limits
"""

from fastapi import APIRouter
from typing import Dict, Any
from datetime import datetime, UTC

from config.limits import get_limits_table
from config.pricing import (
    FIRST_TIME_DISCOUNT_PERCENT,
    GRACE_PERIOD_HOURS,
    REVIEW_DISCOUNT_PERCENT,
    get_pricing_table,
)

# Create router
router = APIRouter(prefix="/config", tags=["config"])


@router.get("/pricing")
async def get_pricing() -> Dict[str, Any]:
    """
    Get current pricing configuration

    Public endpoint - no authentication required

    Returns:
        {
            "plans": {
                "starter_trader": {"1": {"price": 49.0, "discount": 0, "label": "1 Month"}, ...},
                "pro_trader": {...}
            },
            "first_time_discount_percent": 10,
            "review_discount_percent": 6,
            "grace_period_hours": 48,
            "updated_at": "..."
        }
    """
    return {
        "plans": get_pricing_table(),
        "first_time_discount_percent": FIRST_TIME_DISCOUNT_PERCENT,
        "review_discount_percent": REVIEW_DISCOUNT_PERCENT,
        "grace_period_hours": GRACE_PERIOD_HOURS,
        "updated_at": datetime.now(UTC).isoformat(),
    }


@router.get("/limits")
async def get_limits() -> Dict[str, Any]:
    """
    Get signal generation limits per tier

    Public endpoint - same table the credit gate enforces (null = unlimited)
    """
    return {"tiers": get_limits_table()}
