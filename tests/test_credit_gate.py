"""
Tests for the credit & cooldown gate
"""

import asyncio
import pytest
from datetime import datetime, timedelta, UTC

from sqlalchemy import select, func
from sqlalchemy.orm.exc import StaleDataError

from config.limits import TIER_LIMITS
from conftest import StubGenerator, make_payload
from src.cache.user_locks import UserLockManager
from src.core.enums import GateDecision
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
from src.database.models import SubscriptionTier, TradingSignal, User
from src.services.credit_gate import CreditGate, evaluate_admission, reconcile_counters


DAY = datetime(2024, 6, 10, 6, 0, tzinfo=UTC)  # Monday
SATURDAY = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def build_gate(session_maker, generator, **kwargs) -> CreditGate:
    kwargs.setdefault("tz_name", "UTC")
    kwargs.setdefault("enforce_market_hours", True)
    return CreditGate(session_maker, generator, lock_manager=UserLockManager(timeout=5), **kwargs)


async def count_signals(session_maker, user_id: int) -> int:
    async with session_maker() as session:
        result = await session.execute(
            select(func.count(TradingSignal.id)).where(TradingSignal.user_id == user_id)
        )
        return result.scalar_one()


def starter_fields(start: datetime, months: int = 1) -> dict:
    end = start + timedelta(days=30 * months)
    return dict(
        subscription_start_date=start,
        subscription_end_date=end,
        grace_period_end_date=end + timedelta(hours=48),
        subscription_period=months,
        is_first_time_subscriber=False,
    )


# ===========================
# PURE FUNCTIONS
# ===========================


def test_reconcile_resets_on_new_local_day():
    user = User(
        daily_credits=2,
        monthly_credits=5,
        last_credit_reset=DAY - timedelta(hours=7),  # 23:00 previous day
        last_generation_time=DAY - timedelta(hours=7),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )

    counters = reconcile_counters(user, DAY, "UTC")

    assert counters.daily_reset is True
    assert counters.monthly_reset is False
    assert counters.daily_credits == 0
    assert counters.monthly_credits == 5
    # Pure: the user is untouched
    assert user.daily_credits == 2
    assert user.last_generation_time == DAY - timedelta(hours=7)


def test_reconcile_same_day_keeps_counters():
    user = User(
        daily_credits=1,
        monthly_credits=1,
        last_credit_reset=DAY - timedelta(hours=1),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )

    counters = reconcile_counters(user, DAY, "UTC")

    assert counters.daily_credits == 1
    assert counters.last_credit_reset == DAY - timedelta(hours=1)


def test_reconcile_day_boundary_follows_timezone():
    # 14:30 and 15:30 UTC fall on different Tokyo days
    user = User(
        daily_credits=2,
        monthly_credits=2,
        last_credit_reset=datetime(2024, 6, 10, 14, 30, tzinfo=UTC),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    now = datetime(2024, 6, 10, 15, 30, tzinfo=UTC)

    assert reconcile_counters(user, now, "UTC").daily_credits == 2
    assert reconcile_counters(user, now, "Asia/Tokyo").daily_credits == 0


def test_monthly_reset_at_billing_cycle():
    user = User(
        subscription_tier="starter_trader",
        daily_credits=3,
        monthly_credits=60,
        last_credit_reset=datetime(2024, 6, 14, 20, 0, tzinfo=UTC),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        **starter_fields(datetime(2024, 5, 15, 0, 0, tzinfo=UTC), months=3),
    )

    counters = reconcile_counters(user, datetime(2024, 6, 15, 9, 0, tzinfo=UTC), "UTC")

    assert counters.monthly_reset is True
    assert counters.monthly_credits == 0


def test_admin_is_never_limited():
    user = User(
        subscription_tier="admin",
        daily_credits=500,
        monthly_credits=5000,
        last_credit_reset=DAY,
        last_generation_time=DAY,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )

    check = evaluate_admission(user, DAY, tz_name="UTC")

    assert check.decision == GateDecision.ALLOWED
    assert check.daily_remaining is None
    assert check.cooldown_minutes == 0


def test_expired_paid_user_gets_free_limits():
    start = DAY - timedelta(days=40)
    user = User(
        subscription_tier="pro_trader",
        daily_credits=2,
        monthly_credits=2,
        last_credit_reset=DAY - timedelta(hours=1),
        last_generation_time=DAY - timedelta(hours=5),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        **starter_fields(start),
    )

    check = evaluate_admission(user, DAY, tz_name="UTC")

    assert check.tier == SubscriptionTier.FREE
    assert check.decision == GateDecision.DAILY_LIMIT_REACHED


# ===========================
# GATE
# ===========================


async def test_successful_generation(session_maker, make_user, load_user, generator):
    user = await make_user()
    gate = build_gate(session_maker, generator)

    result = await gate.request_signal(user.id, "1H", now=DAY)

    assert generator.calls == 1
    assert result.credits_used == 1
    assert result.credits_remaining == 1
    assert result.monthly_credits_remaining == 9
    assert result.next_generation_time == DAY + timedelta(minutes=90)
    assert result.signal.take_profit == 2362.0
    assert [tp["risk_reward_ratio"] for tp in result.signal.take_profits] == [1.1, 2.3]

    stored = await load_user(user.id)
    assert stored.daily_credits == 1
    assert stored.monthly_credits == 1
    assert stored.last_generation_time == DAY

    data = result.to_dict()
    assert data["signal"]["timeframe"] == "1H"
    assert data["signal"]["direction"] == "BUY"


async def test_cooldown_reports_remaining_minutes(session_maker, make_user, generator):
    user = await make_user(
        SubscriptionTier.STARTER_TRADER,
        daily_credits=1,
        monthly_credits=1,
        last_credit_reset=DAY - timedelta(minutes=10),
        last_generation_time=DAY - timedelta(minutes=10),
        **starter_fields(DAY - timedelta(days=5)),
    )
    gate = build_gate(session_maker, generator)

    with pytest.raises(CooldownActive) as exc_info:
        await gate.request_signal(user.id, "15M", now=DAY)

    assert exc_info.value.remaining_minutes == 20
    assert exc_info.value.next_generation_time == DAY + timedelta(minutes=20)
    assert generator.calls == 0


async def test_free_daily_limit(session_maker, make_user, generator):
    user = await make_user()
    gate = build_gate(session_maker, generator)

    await gate.request_signal(user.id, "1H", now=DAY)
    await gate.request_signal(user.id, "1H", now=DAY + timedelta(hours=2))

    with pytest.raises(DailyLimitReached) as exc_info:
        await gate.request_signal(user.id, "1H", now=DAY + timedelta(hours=4))

    assert exc_info.value.daily_limit == 2
    assert "Upgrade to Starter" in exc_info.value.message
    assert generator.calls == 2


async def test_daily_reset_without_background_job(session_maker, make_user, load_user, generator):
    user = await make_user()
    gate = build_gate(session_maker, generator)

    await gate.request_signal(user.id, "1H", now=DAY)
    await gate.request_signal(user.id, "1H", now=DAY + timedelta(hours=2))

    result = await gate.request_signal(user.id, "1H", now=DAY + timedelta(days=1))

    assert result.credits_used == 1
    stored = await load_user(user.id)
    assert stored.daily_credits == 1
    assert stored.monthly_credits == 3


async def test_day_rollover_keeps_cooldown(session_maker, make_user, generator):
    late = datetime(2024, 6, 10, 23, 50, tzinfo=UTC)
    user = await make_user(
        daily_credits=1,
        monthly_credits=1,
        last_credit_reset=late,
        last_generation_time=late,
    )
    gate = build_gate(session_maker, generator)

    with pytest.raises(CooldownActive) as exc_info:
        await gate.request_signal(user.id, "1H", now=late + timedelta(minutes=20))

    assert exc_info.value.remaining_minutes == 70


async def test_monthly_limit(session_maker, make_user, generator):
    cycle_start = datetime(2024, 6, 1, tzinfo=UTC)
    user = await make_user(
        SubscriptionTier.STARTER_TRADER,
        daily_credits=4,
        monthly_credits=60,
        last_credit_reset=datetime(2024, 6, 19, 12, 0, tzinfo=UTC),
        last_generation_time=datetime(2024, 6, 19, 12, 0, tzinfo=UTC),
        **starter_fields(cycle_start),
    )
    gate = build_gate(session_maker, generator)

    with pytest.raises(MonthlyLimitReached) as exc_info:
        await gate.request_signal(user.id, "4H", now=datetime(2024, 6, 20, 12, 0, tzinfo=UTC))

    assert exc_info.value.monthly_limit == 60


async def test_monthly_counter_resets_in_new_cycle(session_maker, make_user, load_user, generator):
    start = datetime(2024, 5, 1, tzinfo=UTC)
    user = await make_user(
        SubscriptionTier.STARTER_TRADER,
        daily_credits=4,
        monthly_credits=60,
        last_credit_reset=datetime(2024, 5, 31, 12, 0, tzinfo=UTC),
        last_generation_time=datetime(2024, 5, 31, 12, 0, tzinfo=UTC),
        **starter_fields(start, months=3),
    )
    gate = build_gate(session_maker, generator)

    result = await gate.request_signal(user.id, "4H", now=datetime(2024, 6, 3, 12, 0, tzinfo=UTC))

    assert result.monthly_credits_remaining == 59
    stored = await load_user(user.id)
    assert stored.monthly_credits == 1


async def test_failure_returns_credit(session_maker, make_user, load_user):
    user = await make_user(
        daily_credits=1,
        monthly_credits=4,
        last_credit_reset=DAY - timedelta(hours=3),
        last_generation_time=DAY - timedelta(hours=3),
    )
    generator = StubGenerator(error=RuntimeError("model unavailable"))
    gate = build_gate(session_maker, generator)

    with pytest.raises(ExternalGenerationFailure) as exc_info:
        await gate.request_signal(user.id, "1H", now=DAY)

    assert exc_info.value.retryable is True
    stored = await load_user(user.id)
    assert stored.daily_credits == 1
    assert stored.monthly_credits == 4
    assert stored.last_generation_time == DAY - timedelta(hours=3)
    assert await count_signals(session_maker, user.id) == 0


async def test_timeout_returns_credit(session_maker, make_user, load_user):
    user = await make_user()
    generator = StubGenerator(delay=1.0)
    gate = build_gate(session_maker, generator, generation_timeout=0.05)

    with pytest.raises(ExternalGenerationFailure):
        await gate.request_signal(user.id, "1H", now=DAY)

    stored = await load_user(user.id)
    assert stored.daily_credits == 0
    assert stored.monthly_credits == 0
    assert stored.last_generation_time is None

    # Credit and cooldown were returned, so the next call goes through
    gate.generator = StubGenerator()
    result = await gate.request_signal(user.id, "1H", now=DAY + timedelta(minutes=1))
    assert result.credits_used == 1


async def test_invalid_payload_is_generation_failure(session_maker, make_user, load_user):
    user = await make_user()

    async def broken_model(timeframe, tier):
        return make_payload(entry_price=-1)

    gate = build_gate(session_maker, broken_model)

    with pytest.raises(ExternalGenerationFailure):
        await gate.request_signal(user.id, "1H", now=DAY)

    stored = await load_user(user.id)
    assert stored.daily_credits == 0


async def test_invalid_timeframe(session_maker, make_user, generator):
    user = await make_user()
    gate = build_gate(session_maker, generator)

    with pytest.raises(InvalidArgument) as exc_info:
        await gate.request_signal(user.id, "2H", now=DAY)

    assert exc_info.value.field == "timeframe"


async def test_unknown_user(session_maker, generator):
    gate = build_gate(session_maker, generator)

    with pytest.raises(NotFound):
        await gate.request_signal(999, "1H", now=DAY)


async def test_fifty_parallel_requests_no_double_spend(session_maker, make_user, load_user):
    limits = dict(TIER_LIMITS)
    limits[SubscriptionTier.FREE] = {"daily_limit": 2, "monthly_limit": None, "cooldown_minutes": 0}
    user = await make_user()
    generator = StubGenerator(delay=0.001)
    gate = build_gate(session_maker, generator, tier_limits=limits)

    results = await asyncio.gather(
        *[gate.request_signal(user.id, "1H", now=DAY) for _ in range(50)],
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    denials = [r for r in results if isinstance(r, DailyLimitReached)]

    assert len(successes) == 2
    assert len(denials) == 48
    assert generator.calls == 2
    assert await count_signals(session_maker, user.id) == 2

    stored = await load_user(user.id)
    assert stored.daily_credits == 2


async def test_credit_status_view(session_maker, make_user, generator):
    user = await make_user(
        daily_credits=1,
        monthly_credits=1,
        last_credit_reset=DAY - timedelta(minutes=30),
        last_generation_time=DAY - timedelta(minutes=30),
    )
    gate = build_gate(session_maker, generator)

    status = gate.credit_status(user, now=DAY)

    assert status["tier"] == "free"
    assert status["daily_remaining"] == 1
    assert status["monthly_remaining"] == 9
    assert status["can_generate"] is False
    assert status["reason"] == "cooldown_active"
    assert status["next_generation_time"] == (DAY + timedelta(minutes=60)).isoformat()


# ===========================
# MARKET HOURS
# ===========================


def test_market_closed_is_checked_first():
    user = User(
        subscription_tier="free",
        daily_credits=2,
        monthly_credits=2,
        last_credit_reset=SATURDAY,
        last_generation_time=SATURDAY - timedelta(minutes=5),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )

    check = evaluate_admission(user, SATURDAY, tz_name="UTC")
    assert check.decision == GateDecision.MARKET_CLOSED
    assert check.market_open is False

    check = evaluate_admission(user, SATURDAY, tz_name="UTC", enforce_market_hours=False)
    assert check.decision == GateDecision.COOLDOWN_ACTIVE


async def test_market_closed_leaves_credits_untouched(session_maker, make_user, load_user, generator):
    earlier = SATURDAY - timedelta(hours=20)
    user = await make_user(
        daily_credits=1,
        monthly_credits=1,
        last_credit_reset=earlier,
        last_generation_time=earlier,
    )
    gate = build_gate(session_maker, generator)

    with pytest.raises(MarketClosed) as exc_info:
        await gate.request_signal(user.id, "1H", now=SATURDAY)

    assert exc_info.value.to_dict()["market_status"] == "closed"
    assert exc_info.value.http_status == 400
    assert generator.calls == 0
    stored = await load_user(user.id)
    assert stored.daily_credits == 1
    assert stored.last_generation_time == earlier


async def test_market_hours_can_be_disabled(session_maker, make_user, load_user, generator):
    user = await make_user()
    gate = build_gate(session_maker, generator, enforce_market_hours=False)

    result = await gate.request_signal(user.id, "1H", now=SATURDAY)
    assert result.credits_used == 1

    status = gate.credit_status(await load_user(user.id), now=SATURDAY + timedelta(hours=3))
    assert status["market_open"] is False
    assert status["can_generate"] is True


# ===========================
# VERSION CONFLICTS
# ===========================


class StaleCommits:
    """Session factory whose listed commits (1-based, across sessions) lose the version check"""

    def __init__(self, session_maker, fail_on):
        self.session_maker = session_maker
        self.fail_on = set(fail_on)
        self.commits = 0

    def __call__(self):
        session = self.session_maker()
        real_commit = session.commit

        async def commit():
            self.commits += 1
            if self.commits in self.fail_on:
                raise StaleDataError("users row version mismatch")
            await real_commit()

        session.commit = commit
        return session


async def test_version_column_detects_lost_update(session_maker, make_user):
    user = await make_user()

    async with session_maker() as first, session_maker() as second:
        mine = await first.get(User, user.id)
        theirs = await second.get(User, user.id)

        mine.daily_credits = 1
        await first.commit()

        theirs.daily_credits = 2
        with pytest.raises(StaleDataError):
            await second.commit()


async def test_reserve_retries_after_version_conflict(session_maker, make_user, load_user, generator):
    user = await make_user()
    sessions = StaleCommits(session_maker, fail_on={1, 2})
    gate = build_gate(sessions, generator, max_retries=3)

    result = await gate.request_signal(user.id, "1H", now=DAY)

    assert result.credits_used == 1
    assert generator.calls == 1
    assert (await load_user(user.id)).daily_credits == 1
    assert await count_signals(session_maker, user.id) == 1


async def test_reserve_gives_up_after_max_retries(session_maker, make_user, load_user, generator):
    user = await make_user()
    sessions = StaleCommits(session_maker, fail_on={1, 2, 3})
    gate = build_gate(sessions, generator, max_retries=3)

    with pytest.raises(ConcurrencyConflict):
        await gate.request_signal(user.id, "1H", now=DAY)

    assert generator.calls == 0
    stored = await load_user(user.id)
    assert stored.daily_credits == 0
    assert stored.last_generation_time is None


async def test_compensation_retries_after_version_conflict(session_maker, make_user, load_user):
    user = await make_user()
    # Commit 1 reserves, commit 2 is the first compensation attempt
    sessions = StaleCommits(session_maker, fail_on={2})
    gate = build_gate(sessions, StubGenerator(error=RuntimeError("model down")), max_retries=3)

    with pytest.raises(ExternalGenerationFailure):
        await gate.request_signal(user.id, "1H", now=DAY)

    assert sessions.commits == 3
    stored = await load_user(user.id)
    assert stored.daily_credits == 0
    assert stored.monthly_credits == 0
    assert stored.last_generation_time is None


# ===========================
# LOCKS
# ===========================


async def test_lock_timeout_is_concurrency_conflict():
    locks = UserLockManager(timeout=0.05)

    async with locks.acquire(1):
        with pytest.raises(ConcurrencyConflict):
            async with locks.acquire(1):
                pass

        # Other users are not blocked
        async with locks.acquire(2):
            assert locks.active_locks() == 2

    assert locks.active_locks() == 0
