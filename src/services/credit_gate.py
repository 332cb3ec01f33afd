# coding: utf-8
"""
Credit & cooldown gate for signal generation

Decides whether a user may generate a signal right now and keeps the credit
counters consistent under concurrent requests.

Flow per request (under the user's lock, other users never wait):
    1. reserve   - reconcile counters, check market hours/cooldown/daily/monthly, then
                   commit +1 credit and last_generation_time = now
    2. generate  - call the opaque signal model (bounded by a timeout)
    3. commit    - store the signal
       or compensate - give the credit back and restore the cooldown anchor,
                   then raise ExternalGenerationFailure

Every user write is guarded by a row lock and the optimistic `version`
column; a lost version check is retried, then surfaces as ConcurrencyConflict.
"""
import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config.config import (
    CREDIT_RESET_TIMEZONE,
    GATE_MAX_RETRIES,
    MARKET_HOURS_ENFORCED,
    MARKET_TIMEZONE,
    SIGNAL_GENERATION_TIMEOUT,
)
from config.limits import daily_limit_message, get_tier_limits
from src.cache.user_locks import UserLockManager
from src.core.enums import GateDecision, SubscriptionState
from src.core.exceptions import (
    ConcurrencyConflict,
    CooldownActive,
    DailyLimitReached,
    ExternalGenerationFailure,
    InvalidArgument,
    MarketClosed,
    MonthlyLimitReached,
    NotFound,
)
from src.database import crud
from src.database.models import SubscriptionTier, Timeframe, TradingSignal, User
from src.services.market_hours import is_market_open
from src.services.signal_generator import SignalGenerator
from src.services.subscription_dates import billing_cycle, local_date
from src.services.subscription_state import effective_tier, resolve_state


# ============================================================================
# PURE DECISION FUNCTIONS
# ============================================================================


@dataclass(frozen=True)
class CreditCounters:
    """Counters after lazy boundary resets"""

    daily_credits: int
    monthly_credits: int
    last_credit_reset: datetime
    daily_reset: bool
    monthly_reset: bool


def reconcile_counters(
    user: User, now: datetime, tz_name: str = CREDIT_RESET_TIMEZONE
) -> CreditCounters:
    """
    Apply lazy daily/monthly resets without touching the user

    Daily counter resets when the last reset happened on an earlier local day
    (rollover timezone); monthly counter resets when the last reset predates
    the current billing cycle. The cooldown anchor is never touched.
    """
    last_reset = user.last_credit_reset
    anchor = user.subscription_start_date or user.created_at or now
    cycle_start, _ = billing_cycle(anchor, now)

    daily_reset = last_reset is None or local_date(last_reset, tz_name) < local_date(now, tz_name)
    monthly_reset = last_reset is None or last_reset < cycle_start

    return CreditCounters(
        daily_credits=0 if daily_reset else user.daily_credits,
        monthly_credits=0 if monthly_reset else user.monthly_credits,
        last_credit_reset=now if (daily_reset or monthly_reset) else last_reset,
        daily_reset=daily_reset,
        monthly_reset=monthly_reset,
    )


@dataclass(frozen=True)
class AdmissionCheck:
    """Outcome of one admission check (no side effects)"""

    decision: GateDecision
    tier: SubscriptionTier
    state: SubscriptionState
    counters: CreditCounters
    daily_limit: Optional[int]
    monthly_limit: Optional[int]
    cooldown_minutes: int
    market_open: bool = True
    market_tz: str = MARKET_TIMEZONE
    next_generation_time: Optional[datetime] = None
    remaining_minutes: int = 0

    @property
    def allowed(self) -> bool:
        return self.decision == GateDecision.ALLOWED

    @property
    def daily_remaining(self) -> Optional[int]:
        if self.daily_limit is None:
            return None
        return max(self.daily_limit - self.counters.daily_credits, 0)

    @property
    def monthly_remaining(self) -> Optional[int]:
        if self.monthly_limit is None:
            return None
        return max(self.monthly_limit - self.counters.monthly_credits, 0)


def evaluate_admission(
    user: User,
    now: datetime,
    tier_limits: Optional[Dict[SubscriptionTier, Dict[str, Any]]] = None,
    tz_name: str = CREDIT_RESET_TIMEZONE,
    enforce_market_hours: bool = True,
    market_tz: str = MARKET_TIMEZONE,
) -> AdmissionCheck:
    """
    Decide whether `user` may generate a signal at `now`

    Order: market hours, cooldown, daily ceiling, monthly ceiling (counters
    reconciled first). With `enforce_market_hours` off the market state is
    still reported but never denies.
    """
    state = resolve_state(user, now)
    tier = effective_tier(user, now)
    limits = get_tier_limits(tier, tier_limits)
    counters = reconcile_counters(user, now, tz_name)

    check = dict(
        tier=tier,
        state=state,
        counters=counters,
        daily_limit=limits["daily_limit"],
        monthly_limit=limits["monthly_limit"],
        cooldown_minutes=limits["cooldown_minutes"],
        market_open=is_market_open(now, market_tz),
        market_tz=market_tz,
    )

    if enforce_market_hours and not check["market_open"]:
        return AdmissionCheck(decision=GateDecision.MARKET_CLOSED, **check)

    cooldown = timedelta(minutes=limits["cooldown_minutes"])
    if user.last_generation_time is not None and cooldown:
        next_time = user.last_generation_time + cooldown
        if now < next_time:
            remaining = math.ceil((next_time - now).total_seconds() / 60)
            return AdmissionCheck(
                decision=GateDecision.COOLDOWN_ACTIVE,
                next_generation_time=next_time,
                remaining_minutes=remaining,
                **check,
            )

    if limits["daily_limit"] is not None and counters.daily_credits >= limits["daily_limit"]:
        return AdmissionCheck(decision=GateDecision.DAILY_LIMIT_REACHED, **check)

    if limits["monthly_limit"] is not None and counters.monthly_credits >= limits["monthly_limit"]:
        return AdmissionCheck(decision=GateDecision.MONTHLY_LIMIT_REACHED, **check)

    return AdmissionCheck(decision=GateDecision.ALLOWED, **check)


def raise_for_denial(
    check: AdmissionCheck,
    tier_limits: Optional[Dict[SubscriptionTier, Dict[str, Any]]] = None,
) -> None:
    """Translate a denied check into the matching error"""
    if check.decision == GateDecision.MARKET_CLOSED:
        raise MarketClosed(check.market_tz)

    if check.decision == GateDecision.COOLDOWN_ACTIVE:
        raise CooldownActive(check.remaining_minutes, check.next_generation_time)

    if check.decision == GateDecision.DAILY_LIMIT_REACHED:
        raise DailyLimitReached(daily_limit_message(check.tier, tier_limits), check.daily_limit)

    if check.decision == GateDecision.MONTHLY_LIMIT_REACHED:
        raise MonthlyLimitReached(
            f"Monthly limit reached. Your plan includes {check.monthly_limit} signals per billing cycle.",
            check.monthly_limit,
        )


# ============================================================================
# GATE
# ============================================================================


@dataclass(frozen=True)
class Reservation:
    """Credit committed before the model call, returned on failure"""

    user_id: int
    tier: SubscriptionTier
    reserved_at: datetime
    previous_generation_time: Optional[datetime]
    daily_used: int
    monthly_used: int
    daily_limit: Optional[int]
    monthly_limit: Optional[int]
    cooldown_minutes: int

    @property
    def next_generation_time(self) -> datetime:
        return self.reserved_at + timedelta(minutes=self.cooldown_minutes)


@dataclass
class GenerationResult:
    """Successful generation returned to the caller"""

    signal: TradingSignal
    credits_used: int
    credits_remaining: Optional[int]
    monthly_credits_remaining: Optional[int]
    next_generation_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal": signal_to_dict(self.signal),
            "credits_used": self.credits_used,
            "credits_remaining": self.credits_remaining,
            "monthly_credits_remaining": self.monthly_credits_remaining,
            "next_generation_time": self.next_generation_time.isoformat(),
        }


def signal_to_dict(signal: TradingSignal) -> Dict[str, Any]:
    return {
        "id": signal.id,
        "pair": signal.pair,
        "direction": signal.direction,
        "timeframe": signal.timeframe,
        "entry_price": signal.entry_price,
        "stop_loss": signal.stop_loss,
        "take_profit": signal.take_profit,
        "take_profits": signal.take_profits or [],
        "confidence": signal.confidence,
        "analysis": signal.analysis,
        "status": signal.status,
        "user_action": signal.user_action,
        "pips": signal.pips,
        "created_at": signal.created_at.isoformat() if signal.created_at else None,
        "closed_at": signal.closed_at.isoformat() if signal.closed_at else None,
    }


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now.astimezone(UTC)


class CreditGate:
    """
    Admission control + reserve/compensate around the signal model

    Usage:
        >>> gate = CreditGate(get_session_maker(), OpenAISignalGenerator())
        >>> result = await gate.request_signal(user_id=1, timeframe="1H")
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        generator: SignalGenerator,
        lock_manager=None,
        tier_limits: Optional[Dict[SubscriptionTier, Dict[str, Any]]] = None,
        generation_timeout: float = SIGNAL_GENERATION_TIMEOUT,
        max_retries: int = GATE_MAX_RETRIES,
        tz_name: str = CREDIT_RESET_TIMEZONE,
        enforce_market_hours: bool = MARKET_HOURS_ENFORCED,
        market_tz: str = MARKET_TIMEZONE,
    ):
        self.session_maker = session_maker
        self.generator = generator
        self.lock_manager = lock_manager or UserLockManager()
        self.tier_limits = tier_limits
        self.generation_timeout = generation_timeout
        self.max_retries = max_retries
        self.tz_name = tz_name
        self.enforce_market_hours = enforce_market_hours
        self.market_tz = market_tz

    async def request_signal(
        self, user_id: int, timeframe: str, now: Optional[datetime] = None
    ) -> GenerationResult:
        """
        Generate a signal if the user is admissible

        Raises:
            InvalidArgument: unknown timeframe
            NotFound: unknown user
            MarketClosed / CooldownActive / DailyLimitReached / MonthlyLimitReached: denied
            ConcurrencyConflict: lock wait or version retries exhausted
            ExternalGenerationFailure: model failed or timed out (credit returned)
        """
        try:
            timeframe = Timeframe(timeframe)
        except ValueError:
            raise InvalidArgument(f"Invalid timeframe: {timeframe}", field="timeframe")

        now = _utc(now)

        async with self.lock_manager.acquire(user_id):
            reservation = await self._reserve(user_id, now)

            try:
                payload = await asyncio.wait_for(
                    self.generator(timeframe, reservation.tier),
                    timeout=self.generation_timeout,
                )
            except asyncio.CancelledError:
                await asyncio.shield(self._compensate(reservation))
                raise
            except TimeoutError as e:
                logger.warning(f"[GATE] user={user_id} generation timed out after {self.generation_timeout}s")
                await self._compensate(reservation)
                raise ExternalGenerationFailure(
                    "Signal generation timed out, your credit was not used. Please retry."
                ) from e
            except Exception as e:
                logger.error(f"[GATE] user={user_id} generation failed: {e}")
                await self._compensate(reservation)
                raise ExternalGenerationFailure(
                    "Signal generation failed, your credit was not used. Please retry."
                ) from e

            try:
                async with self.session_maker() as session:
                    signal = await crud.create_signal(
                        session,
                        user_id=user_id,
                        direction=payload.direction.value,
                        timeframe=timeframe.value,
                        entry_price=payload.entry_price,
                        stop_loss=payload.stop_loss,
                        take_profits=payload.take_profits,
                        confidence=payload.confidence,
                        analysis=payload.analysis,
                        pair=payload.pair,
                        created_at=now,
                    )
            except Exception:
                await self._compensate(reservation)
                raise

        logger.info(
            f"[GATE] user={user_id} tier={reservation.tier.value} signal={signal.id} "
            f"daily={reservation.daily_used}/{_fmt(reservation.daily_limit)} "
            f"monthly={reservation.monthly_used}/{_fmt(reservation.monthly_limit)}"
        )

        return GenerationResult(
            signal=signal,
            credits_used=reservation.daily_used,
            credits_remaining=_remaining(reservation.daily_limit, reservation.daily_used),
            monthly_credits_remaining=_remaining(reservation.monthly_limit, reservation.monthly_used),
            next_generation_time=reservation.next_generation_time,
        )

    async def _reserve(self, user_id: int, now: datetime) -> Reservation:
        for attempt in range(1, self.max_retries + 1):
            async with self.session_maker() as session:
                user = await crud.get_user_for_update(session, user_id)
                if user is None:
                    raise NotFound(f"User {user_id} not found")

                check = self._evaluate(user, now)
                if not check.allowed:
                    logger.info(
                        f"[GATE] user={user_id} tier={check.tier.value} denied={check.decision.value} "
                        f"daily={check.counters.daily_credits}/{_fmt(check.daily_limit)} "
                        f"monthly={check.counters.monthly_credits}/{_fmt(check.monthly_limit)}"
                    )
                    raise_for_denial(check, self.tier_limits)

                previous_generation_time = user.last_generation_time
                user.daily_credits = check.counters.daily_credits + 1
                user.monthly_credits = check.counters.monthly_credits + 1
                user.last_credit_reset = check.counters.last_credit_reset
                user.last_generation_time = now
                user.max_daily_credits = check.daily_limit
                user.max_monthly_credits = check.monthly_limit

                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.warning(f"[GATE] user={user_id} version conflict on reserve (attempt {attempt})")
                    continue

                return Reservation(
                    user_id=user_id,
                    tier=check.tier,
                    reserved_at=now,
                    previous_generation_time=previous_generation_time,
                    daily_used=user.daily_credits,
                    monthly_used=user.monthly_credits,
                    daily_limit=check.daily_limit,
                    monthly_limit=check.monthly_limit,
                    cooldown_minutes=check.cooldown_minutes,
                )

        raise ConcurrencyConflict("Your credits were updated concurrently, please retry")

    async def _compensate(self, reservation: Reservation) -> None:
        """Return the reserved credit and restore the cooldown anchor"""
        for attempt in range(1, self.max_retries + 1):
            async with self.session_maker() as session:
                user = await crud.get_user_for_update(session, reservation.user_id)
                if user is None:
                    return

                user.daily_credits = max(user.daily_credits - 1, 0)
                user.monthly_credits = max(user.monthly_credits - 1, 0)
                if user.last_generation_time == reservation.reserved_at:
                    user.last_generation_time = reservation.previous_generation_time

                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.warning(
                        f"[GATE] user={reservation.user_id} version conflict on compensation (attempt {attempt})"
                    )
                    continue

                logger.info(f"[GATE] user={reservation.user_id} reservation returned")
                return

        logger.error(f"[GATE] user={reservation.user_id} could not return reserved credit")

    def _evaluate(self, user: User, now: datetime) -> AdmissionCheck:
        return evaluate_admission(
            user,
            now,
            self.tier_limits,
            self.tz_name,
            enforce_market_hours=self.enforce_market_hours,
            market_tz=self.market_tz,
        )

    def credit_status(self, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Display view of the limits table applied to one user (read only)"""
        now = _utc(now)
        check = self._evaluate(user, now)
        return credit_status_view(check, user, now)


def credit_status_view(check: AdmissionCheck, user: User, now: datetime) -> Dict[str, Any]:
    next_time = None
    if user.last_generation_time is not None and check.cooldown_minutes:
        candidate = user.last_generation_time + timedelta(minutes=check.cooldown_minutes)
        if candidate > now:
            next_time = candidate

    return {
        "tier": check.tier.value,
        "state": check.state.value,
        "daily_used": check.counters.daily_credits,
        "daily_limit": check.daily_limit,
        "daily_remaining": check.daily_remaining,
        "monthly_used": check.counters.monthly_credits,
        "monthly_limit": check.monthly_limit,
        "monthly_remaining": check.monthly_remaining,
        "cooldown_minutes": check.cooldown_minutes,
        "next_generation_time": next_time.isoformat() if next_time else None,
        "market_open": check.market_open,
        "can_generate": check.allowed,
        "reason": None if check.allowed else check.decision.value,
    }


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(limit - used, 0)


def _fmt(limit: Optional[int]) -> str:
    return "∞" if limit is None else str(limit)
