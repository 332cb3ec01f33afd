# coding: utf-8
"""
Monthly Review Challenge Service

Users who report the outcome of every signal closed in a billing cycle earn a
loyalty discount code on the last day of that cycle.

Features:
- Pending review listing with once-per-day notification flag
- One-time outcome reporting per signal
- Discount code issued once per billing cycle, claim is idempotent
- Consecutive completion streak
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config.config import CREDIT_RESET_TIMEZONE
from config.pricing import REVIEW_DISCOUNT_PERCENT
from src.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidArgument,
    InvalidStateTransition,
    NotFound,
)
from src.database import crud
from src.database.models import SignalStatus, TradingSignal, User, UserAction
from src.services.subscription_dates import billing_cycle, calendar_days_between, local_date


DISCOUNT_CODE_PREFIX = "TRADER"

# Reward window: calendar days left until cycle end
REWARD_WINDOW_DAYS = 1

REVIEWABLE_STATUSES = (SignalStatus.CLOSED.value, SignalStatus.STOPPED.value)
REPORTABLE_ACTIONS = (
    UserAction.SUCCESSFUL.value,
    UserAction.UNSUCCESSFUL.value,
    UserAction.DIDNT_TAKE.value,
)


def generate_discount_code(user_id: int, cycle_start: datetime) -> str:
    """TRADER + last 4 chars of user id + MM + YY of the cycle start"""
    user_part = f"{user_id:04d}"[-4:].upper()
    return f"{DISCOUNT_CODE_PREFIX}{user_part}{cycle_start.month:02d}{cycle_start.year % 100:02d}"


async def _commit_user(session: AsyncSession) -> None:
    try:
        await session.commit()
    except StaleDataError:
        await session.rollback()
        raise ConcurrencyConflict("User was updated concurrently, please retry")


class ReviewChallengeService:
    """Service for the monthly signal review challenge"""

    @staticmethod
    async def get_pending_reviews(
        session: AsyncSession, user: User, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Closed signals still waiting for the user's outcome

        Returns:
            {"pending_signals": [...], "should_notify": bool}
        """
        now = now or datetime.now(UTC)
        signals = await crud.get_pending_review_signals(session, user.id)

        pending: List[Dict[str, Any]] = [
            {
                "id": signal.id,
                "pair": signal.pair,
                "direction": signal.direction,
                "entry_price": signal.entry_price,
                "timeframe": signal.timeframe,
                "closed_at": signal.closed_at.isoformat(),
                "days_since_close": (now - signal.closed_at).days,
            }
            for signal in signals
        ]

        today = local_date(now, CREDIT_RESET_TIMEZONE)
        should_notify = bool(pending) and user.last_notification_date != today

        return {"pending_signals": pending, "should_notify": should_notify}

    @staticmethod
    async def mark_notification_sent(
        session: AsyncSession, user: User, now: Optional[datetime] = None
    ) -> None:
        """Remember that today's review reminder was delivered"""
        now = now or datetime.now(UTC)
        user.last_notification_date = local_date(now, CREDIT_RESET_TIMEZONE)
        await _commit_user(session)

    @staticmethod
    async def record_user_action(
        session: AsyncSession,
        user: User,
        signal_id: int,
        action: str,
        now: Optional[datetime] = None,
    ) -> TradingSignal:
        """
        Record the outcome of a closed signal (once, owner only)

        Raises:
            InvalidArgument: action is not successful/unsuccessful/didnt_take
            NotFound: unknown signal
            Forbidden: signal belongs to another user
            InvalidStateTransition: signal still open or outcome already set
        """
        if action not in REPORTABLE_ACTIONS:
            raise InvalidArgument(
                "Action must be one of: successful, unsuccessful, didnt_take", field="action"
            )

        signal = await crud.get_signal(session, signal_id)
        if signal is None:
            raise NotFound("Signal not found")
        if signal.user_id != user.id:
            raise Forbidden("Access denied")
        if signal.status not in REVIEWABLE_STATUSES:
            raise InvalidStateTransition(
                "Outcome can only be reported after the signal closes",
                current_status=signal.status,
            )
        if signal.user_action != UserAction.PENDING.value:
            raise InvalidStateTransition(
                "Outcome already reported", current_status=signal.user_action
            )

        user.last_notification_date = local_date(now or datetime.now(UTC), CREDIT_RESET_TIMEZONE)
        try:
            await crud.update_signal_user_action(session, signal, action)
        except StaleDataError:
            await session.rollback()
            raise ConcurrencyConflict("User was updated concurrently, please retry")

        logger.info(f"[REVIEW] user={user.id} signal={signal_id} action={action}")
        return signal

    @staticmethod
    async def get_monthly_status(
        session: AsyncSession, user: User, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Review completion for the current billing cycle

        Issues the cycle's discount code the first time the cycle is found
        complete inside the reward window.
        """
        now = now or datetime.now(UTC)
        anchor = user.subscription_start_date or user.created_at or now
        cycle_start, cycle_end = billing_cycle(anchor, now)

        total, reviewed = await crud.count_cycle_reviews(session, user.id, cycle_start, cycle_end)
        all_reviewed = total > 0 and reviewed == total

        days_until_end = calendar_days_between(now, cycle_end, CREDIT_RESET_TIMEZONE)
        in_reward_window = 0 <= days_until_end <= REWARD_WINDOW_DAYS
        completed = all_reviewed and in_reward_window

        if completed and user.last_discount_cycle_start != cycle_start:
            await ReviewChallengeService._issue_code(session, user, anchor, cycle_start)

        return {
            "completed": completed,
            "all_signals_reviewed": all_reviewed,
            "total_signals": total,
            "reviewed_signals": reviewed,
            "discount_code": user.pending_discount_code,
            "discount_percentage": REVIEW_DISCOUNT_PERCENT if completed else 0,
            "billing_cycle_start": cycle_start.isoformat(),
            "billing_cycle_end": cycle_end.isoformat(),
            "days_until_billing_cycle_end": days_until_end,
            "completion_streak": user.monthly_completion_streak,
        }

    @staticmethod
    async def _issue_code(
        session: AsyncSession, user: User, anchor: datetime, cycle_start: datetime
    ) -> str:
        previous_start, _ = billing_cycle(anchor, cycle_start - timedelta(microseconds=1))
        consecutive = (
            user.last_discount_cycle_start is not None
            and cycle_start != anchor
            and user.last_discount_cycle_start == previous_start
        )

        code = generate_discount_code(user.id, cycle_start)
        user.pending_discount_code = code
        user.last_discount_code = code
        user.last_discount_cycle_start = cycle_start
        user.monthly_completion_streak = (user.monthly_completion_streak + 1) if consecutive else 1
        await _commit_user(session)

        logger.info(
            f"[REVIEW] user={user.id} issued {code} for cycle {cycle_start.date()} "
            f"(streak={user.monthly_completion_streak})"
        )
        return code

    @staticmethod
    async def claim_discount(session: AsyncSession, user: User) -> Tuple[str, bool]:
        """
        Claim the pending discount code

        Returns:
            (code, already_claimed) - a repeated claim returns the same code

        Raises:
            NotFound: no code was ever issued
        """
        if user.pending_discount_code:
            code = user.pending_discount_code
            user.pending_discount_code = None
            await _commit_user(session)
            logger.info(f"[REVIEW] user={user.id} claimed {code}")
            return code, False

        if user.last_discount_code:
            return user.last_discount_code, True

        raise NotFound("No discount code available")
