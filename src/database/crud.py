"""
CRUD operations for NTL Signals

Async database operations using SQLAlchemy 2.0
"""

from datetime import datetime, timedelta, UTC
from typing import List, Optional, Sequence, Dict, Any

from loguru import logger
from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import (
    User,
    TradingSignal,
    PaymentRequest,
    SubscriptionTier,
    SignalStatus,
    UserAction,
    PaymentStatus,
)


# Tiers that carry subscription dates
PAID_TIERS = (SubscriptionTier.STARTER_TRADER.value, SubscriptionTier.PRO_TRADER.value)


# ===========================
# USER OPERATIONS
# ===========================


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """Get user by database ID"""
    return await session.get(User, user_id)


async def get_user_for_update(session: AsyncSession, user_id: int) -> Optional[User]:
    """
    Load user with a row lock (SELECT ... FOR UPDATE)

    Always reads fresh column values, even if the user is already in the
    session identity map. SQLite ignores FOR UPDATE; the version column
    still protects the write.
    """
    stmt = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ===========================
# SUBSCRIPTION SWEEP QUERIES
# ===========================


async def get_lapsed_users_without_grace(
    session: AsyncSession, now: datetime
) -> Sequence[User]:
    """Paid users whose end date passed but no grace end was written"""
    stmt = select(User).where(
        and_(
            User.subscription_tier.in_(PAID_TIERS),
            User.subscription_end_date.is_not(None),
            User.subscription_end_date < now,
            User.grace_period_end_date.is_(None),
        )
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_users_expiring_within(
    session: AsyncSession, now: datetime, days: int = 7
) -> Sequence[User]:
    """Paid users whose subscription ends in the next `days` days"""
    stmt = select(User).where(
        and_(
            User.subscription_tier.in_(PAID_TIERS),
            User.subscription_end_date.is_not(None),
            User.subscription_end_date >= now,
            User.subscription_end_date <= now + timedelta(days=days),
        )
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_users_past_grace(session: AsyncSession, now: datetime) -> Sequence[User]:
    """Paid users whose grace period has elapsed (downgrade candidates)"""
    stmt = select(User).where(
        and_(
            User.subscription_tier.in_(PAID_TIERS),
            User.grace_period_end_date.is_not(None),
            User.grace_period_end_date < now,
        )
    )
    result = await session.execute(stmt)
    return result.scalars().all()


# ===========================
# SIGNAL OPERATIONS
# ===========================


async def create_signal(
    session: AsyncSession,
    user_id: int,
    direction: str,
    timeframe: str,
    entry_price: float,
    stop_loss: float,
    take_profits: List[Dict[str, Any]],
    confidence: int,
    analysis: str,
    pair: str = "XAUUSD",
    created_at: Optional[datetime] = None,
) -> TradingSignal:
    """
    Persist a generated signal

    Args:
        take_profits: Levels already ordered by risk_reward_ratio ascending

    Returns:
        Created TradingSignal
    """
    signal = TradingSignal(
        user_id=user_id,
        pair=pair,
        direction=direction,
        timeframe=timeframe,
        entry_price=entry_price,
        stop_loss=stop_loss,
        take_profit=take_profits[0]["price"],
        take_profits=take_profits,
        confidence=confidence,
        analysis=analysis,
    )
    if created_at is not None:
        signal.created_at = created_at

    session.add(signal)
    await session.commit()
    await session.refresh(signal)

    logger.info(f"Signal created: {signal.id} for user {user_id} ({direction} {pair} {timeframe})")
    return signal


async def get_signal(session: AsyncSession, signal_id: int) -> Optional[TradingSignal]:
    """Get signal by ID"""
    return await session.get(TradingSignal, signal_id)


async def get_user_signals(
    session: AsyncSession, user_id: int, limit: int = 50
) -> Sequence[TradingSignal]:
    """Most recent signals of a user"""
    stmt = (
        select(TradingSignal)
        .where(TradingSignal.user_id == user_id)
        .order_by(TradingSignal.created_at.desc(), TradingSignal.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def update_signal_status(
    session: AsyncSession,
    signal_id: int,
    status: SignalStatus,
    pips: Optional[float] = None,
    closed_at: Optional[datetime] = None,
) -> TradingSignal:
    """
    Move signal along its lifecycle (market tracker entry point)

    Raises:
        ValueError: if signal not found
    """
    signal = await session.get(TradingSignal, signal_id)
    if not signal:
        raise ValueError(f"Signal {signal_id} not found")

    signal.status = SignalStatus(status).value
    if pips is not None:
        signal.pips = pips
    if signal.status in (SignalStatus.CLOSED.value, SignalStatus.STOPPED.value):
        signal.closed_at = closed_at or signal.closed_at or datetime.now(UTC)

    await session.commit()
    await session.refresh(signal)

    logger.info(f"Signal {signal_id} status -> {signal.status}")
    return signal


async def update_signal_user_action(
    session: AsyncSession, signal: TradingSignal, action: UserAction
) -> TradingSignal:
    """
    Store the outcome reported by the user

    Also flushes any pending change on the owner (same transaction).
    StaleDataError propagates to the caller.
    """
    signal.user_action = UserAction(action).value
    await session.commit()
    return signal


async def get_pending_review_signals(
    session: AsyncSession, user_id: int
) -> Sequence[TradingSignal]:
    """Closed signals whose outcome the user has not reported yet"""
    stmt = (
        select(TradingSignal)
        .where(
            and_(
                TradingSignal.user_id == user_id,
                TradingSignal.status == SignalStatus.CLOSED.value,
                TradingSignal.user_action == UserAction.PENDING.value,
                TradingSignal.closed_at.is_not(None),
            )
        )
        .order_by(TradingSignal.closed_at.desc())
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def count_cycle_reviews(
    session: AsyncSession, user_id: int, cycle_start: datetime, cycle_end: datetime
) -> tuple[int, int]:
    """
    Count closed signals in a billing cycle and how many were reviewed

    Returns:
        (total_closed, reviewed)
    """
    reviewed_expr = func.sum(
        case((TradingSignal.user_action != UserAction.PENDING.value, 1), else_=0)
    )
    stmt = select(func.count(TradingSignal.id), reviewed_expr).where(
        and_(
            TradingSignal.user_id == user_id,
            TradingSignal.status == SignalStatus.CLOSED.value,
            TradingSignal.closed_at.is_not(None),
            TradingSignal.closed_at >= cycle_start,
            TradingSignal.closed_at < cycle_end,
        )
    )
    total, reviewed = (await session.execute(stmt)).one()
    return int(total or 0), int(reviewed or 0)


# ===========================
# PAYMENT REQUEST OPERATIONS
# ===========================


async def add_payment_request(session: AsyncSession, request: PaymentRequest) -> PaymentRequest:
    """
    Persist a composed payment request

    Raises:
        IntegrityError: on reference code collision (session is rolled back)
    """
    session.add(request)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(request)

    logger.info(
        f"[PAYMENT] Request created: {request.reference_code} user={request.user_id} "
        f"plan={request.requested_plan} period={request.subscription_period} amount=${request.amount}"
    )
    return request


async def get_payment_request(
    session: AsyncSession, request_id: int, for_update: bool = False
) -> Optional[PaymentRequest]:
    """Get payment request by ID"""
    stmt = select(PaymentRequest).where(PaymentRequest.id == request_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_payment_requests(
    session: AsyncSession, user_id: int
) -> Sequence[PaymentRequest]:
    """All payment requests of a user, newest first"""
    stmt = (
        select(PaymentRequest)
        .where(PaymentRequest.user_id == user_id)
        .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_payment_requests(
    session: AsyncSession, status: Optional[PaymentStatus] = None, limit: int = 200
) -> Sequence[PaymentRequest]:
    """Payment requests for the admin view, optionally filtered by status"""
    stmt = select(PaymentRequest).order_by(
        PaymentRequest.created_at.desc(), PaymentRequest.id.desc()
    )
    if status is not None:
        stmt = stmt.where(PaymentRequest.status == PaymentStatus(status).value)
    result = await session.execute(stmt.limit(limit))
    return result.scalars().all()
