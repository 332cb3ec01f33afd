"""
Payment Request Service - manual upgrade payments confirmed by an admin

This service handles:
- Reference codes (PAY-XXXXXX) for payment requests
- Composing payment requests from a price quote
- WhatsApp confirmation message and link
- Admin confirm/cancel transitions (the only write path for paid tiers)
"""

import secrets
from datetime import datetime, UTC
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config.config import WHATSAPP_SUPPORT_NUMBER
from config.limits import get_tier_limits
from config.pricing import period_display_text, plan_display_name
from src.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidStateTransition,
    NotFound,
)
from src.database import crud
from src.database.models import PaymentRequest, PaymentStatus, SubscriptionTier, User
from src.services.pricing_service import PriceQuote, compute_price
from src.services.subscription_dates import compute_end_date, compute_grace_period_end


REFERENCE_PREFIX = "PAY-"


def generate_reference_code() -> str:
    """PAY- followed by 6 uppercase hex chars from 3 random bytes"""
    return REFERENCE_PREFIX + secrets.token_hex(3).upper()


def compose_payment_request(
    user_id: int,
    user_email: str,
    quote: PriceQuote,
    reference_code: Optional[str] = None,
    whatsapp_number: Optional[str] = None,
) -> PaymentRequest:
    """
    Build an unsaved payment request from a price quote

    `whatsapp_number` is the user's own contact number (optional); links
    always point at the support number.
    """
    return PaymentRequest(
        user_id=user_id,
        user_email=user_email,
        requested_plan=quote.plan.value,
        subscription_period=quote.period_months,
        reference_code=reference_code or generate_reference_code(),
        amount=quote.final_amount,
        original_amount=quote.original_amount,
        discount_percentage=quote.discount_percentage,
        period_discount=quote.period_discount,
        first_time_discount=quote.first_time_discount,
        status=PaymentStatus.PENDING.value,
        whatsapp_number=whatsapp_number,
    )


def build_whatsapp_message(
    email: str, plan: str, period_months: int, amount, reference_code: str
) -> str:
    """Text the user sends to support to confirm the payment"""
    return (
        "Hi! I want to upgrade my NTL Trading Platform subscription.\n\n"
        f"📧 Email: {email}\n"
        f"📦 Plan: {plan_display_name(plan)}\n"
        f"⏱️ Period: {period_display_text(period_months)}\n"
        f"💵 Amount: ${float(amount):.2f}\n"
        f"🔖 Reference: {reference_code}\n\n"
        "Please guide me through the payment process."
    )


def build_whatsapp_url(phone_number: str, message: str) -> str:
    """wa.me link with the message prefilled"""
    clean_number = phone_number.replace("+", "").replace("-", "").replace(" ", "")
    return f"https://wa.me/{clean_number}?text={quote(message, safe='')}"


def payment_request_to_dict(request: PaymentRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "user_id": request.user_id,
        "user_email": request.user_email,
        "requested_plan": request.requested_plan,
        "plan_name": plan_display_name(request.requested_plan),
        "subscription_period": request.subscription_period,
        "period_text": period_display_text(request.subscription_period),
        "reference_code": request.reference_code,
        "amount": float(request.amount),
        "original_amount": float(request.original_amount),
        "discount_percentage": request.discount_percentage,
        "whatsapp_number": request.whatsapp_number,
        "status": request.status,
        "notes": request.notes,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "completed_at": request.completed_at.isoformat() if request.completed_at else None,
        "completed_by_admin_id": request.completed_by_admin_id,
    }


async def create_payment_request(
    session: AsyncSession,
    user: User,
    plan: str,
    period_months: int,
    whatsapp_number: Optional[str] = None,
) -> Tuple[PaymentRequest, PriceQuote]:
    """
    Price and persist an upgrade intent

    A reference code collision is retried once with a fresh code.

    Raises:
        InvalidArgument: bad plan/period
        Forbidden: admin accounts never buy a plan
        IntegrityError: second collision in a row
    """
    if user.subscription_tier == SubscriptionTier.ADMIN.value:
        raise Forbidden("Admin accounts already have unlimited access")

    quote = compute_price(plan, period_months, user.is_first_time_subscriber)
    # Rollback on collision expires `user`; read what we need up front
    user_id, user_email = user.id, user.email

    for attempt in (1, 2):
        request = compose_payment_request(
            user_id, user_email, quote, whatsapp_number=whatsapp_number or None
        )
        try:
            request = await crud.add_payment_request(session, request)
        except IntegrityError:
            if attempt == 2:
                raise
            logger.warning(f"[PAYMENT] Reference code collision for user {user_id}, regenerating")
            continue
        return request, quote


async def get_whatsapp_link(
    session: AsyncSession, request_id: int, user: User
) -> Dict[str, Any]:
    """
    WhatsApp link for one of the user's own requests

    Raises:
        NotFound: unknown request
        Forbidden: request belongs to another user
    """
    request = await crud.get_payment_request(session, request_id)
    if request is None:
        raise NotFound("Payment request not found")
    if request.user_id != user.id:
        raise Forbidden("Access denied")

    message = build_whatsapp_message(
        request.user_email,
        request.requested_plan,
        request.subscription_period,
        request.amount,
        request.reference_code,
    )
    return {
        "whatsapp_url": build_whatsapp_url(WHATSAPP_SUPPORT_NUMBER, message),
        "message": message,
        "payment_details": payment_request_to_dict(request),
    }


async def _get_pending(session: AsyncSession, request_id: int) -> PaymentRequest:
    request = await crud.get_payment_request(session, request_id, for_update=True)
    if request is None:
        raise NotFound("Payment request not found")
    if request.status != PaymentStatus.PENDING.value:
        raise InvalidStateTransition(
            f"Payment request is already {request.status}", current_status=request.status
        )
    return request


async def confirm_payment(
    session: AsyncSession,
    request_id: int,
    admin_id: Optional[int] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[PaymentRequest, User]:
    """
    Apply a pending payment request to its user

    Writes tier, a fresh paid period, the grace end, clears the first-time
    flag and starts a new credit cycle.

    Raises:
        NotFound: unknown request or user
        InvalidStateTransition: request is not pending, or the user is an admin
        ConcurrencyConflict: user was modified concurrently
    """
    now = now or datetime.now(UTC)
    request = await _get_pending(session, request_id)

    user = await crud.get_user_for_update(session, request.user_id)
    if user is None:
        raise NotFound("User not found")
    if user.subscription_tier == SubscriptionTier.ADMIN.value:
        # Admin access is never time-limited
        raise InvalidStateTransition(
            "Admin accounts cannot be moved to a paid plan", current_status=request.status
        )

    tier = SubscriptionTier(request.requested_plan)
    limits = get_tier_limits(tier)
    end = compute_end_date(now, request.subscription_period)

    user.subscription_tier = tier.value
    user.subscription_start_date = now
    user.subscription_end_date = end
    user.subscription_period = request.subscription_period
    user.grace_period_end_date = compute_grace_period_end(end)
    user.is_first_time_subscriber = False
    user.max_daily_credits = limits["daily_limit"]
    user.max_monthly_credits = limits["monthly_limit"]
    user.daily_credits = 0
    user.monthly_credits = 0
    user.last_credit_reset = now

    request.status = PaymentStatus.COMPLETED.value
    request.completed_at = now
    request.completed_by_admin_id = admin_id
    if notes:
        request.notes = notes

    try:
        await session.commit()
    except StaleDataError:
        await session.rollback()
        raise ConcurrencyConflict("User was updated concurrently, please retry")

    logger.info(
        f"[PAYMENT] Confirmed {request.reference_code}: user={user.id} tier={tier.value} "
        f"period={request.subscription_period}m until {end.isoformat()} (admin={admin_id})"
    )
    return request, user


async def cancel_payment(
    session: AsyncSession,
    request_id: int,
    admin_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> PaymentRequest:
    """
    Cancel a pending payment request (no subscription change)

    Raises:
        NotFound: unknown request
        InvalidStateTransition: request is not pending
    """
    request = await _get_pending(session, request_id)

    request.status = PaymentStatus.CANCELLED.value
    if notes:
        request.notes = notes

    await session.commit()
    await session.refresh(request)

    logger.info(f"[PAYMENT] Cancelled {request.reference_code} (admin={admin_id})")
    return request
