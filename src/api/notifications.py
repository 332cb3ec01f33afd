# coding: utf-8
"""
Review challenge API endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.pricing import REVIEW_DISCOUNT_PERCENT
from src.api.auth import get_current_user
from src.database.engine import get_session
from src.database.models import User
from src.services.review_challenge import ReviewChallengeService


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/pending-reviews")
async def get_pending_reviews(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Closed signals waiting for an outcome, and whether to remind today"""
    return await ReviewChallengeService.get_pending_reviews(session, user)


@router.post("/mark-sent")
async def mark_notification_sent(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Acknowledge today's review reminder"""
    await ReviewChallengeService.mark_notification_sent(session, user)
    return {"success": True}


@router.get("/monthly-status")
async def get_monthly_status(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Review completion for the current billing cycle"""
    return await ReviewChallengeService.get_monthly_status(session, user)


@router.post("/claim-discount")
async def claim_discount(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Claim the loyalty discount code (repeat claims return the same code)"""
    code, already_claimed = await ReviewChallengeService.claim_discount(session, user)
    return {
        "discount_code": code,
        "discount_percentage": REVIEW_DISCOUNT_PERCENT,
        "already_claimed": already_claimed,
    }
