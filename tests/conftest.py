"""
Pytest configuration and fixtures for NTL Signals tests
"""

import asyncio
import pytest
from datetime import datetime, UTC
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.database.engine import build_session_maker
from src.database.models import Base, SubscriptionTier, User
from src.services.signal_generator import SignalPayload


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test engine (what the gate uses)
    """
    return build_session_maker(test_db_engine)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_user(session_maker):
    """
    Factory creating a committed user

    Usage:
        user = await make_user(tier=SubscriptionTier.STARTER_TRADER, daily_credits=1)
    """
    counter = {"n": 0}

    async def _make_user(tier: SubscriptionTier = SubscriptionTier.FREE, **fields) -> User:
        counter["n"] += 1
        fields.setdefault("email", f"trader{counter['n']}@example.com")
        fields.setdefault("created_at", datetime(2024, 1, 1, tzinfo=UTC))
        user = User(subscription_tier=SubscriptionTier(tier).value, **fields)
        async with session_maker() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def load_user(session_maker):
    """Read a user back in a fresh session"""

    async def _load_user(user_id: int) -> User:
        async with session_maker() as session:
            return await session.get(User, user_id)

    return _load_user


def make_payload(**overrides) -> SignalPayload:
    """Valid BUY payload for generator stubs"""
    data = dict(
        direction="BUY",
        entry_price=2350.5,
        stop_loss=2340.0,
        take_profits=[
            {"level": 2, "price": 2375.0, "risk_reward_ratio": 2.3},
            {"level": 1, "price": 2362.0, "risk_reward_ratio": 1.1},
        ],
        confidence=82,
        analysis="Price holds above the 50 EMA with rising momentum.",
    )
    data.update(overrides)
    return SignalPayload(**data)


class StubGenerator:
    """Async signal model stub counting its calls"""

    def __init__(self, payload: SignalPayload = None, error: Exception = None, delay: float = 0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self, timeframe, tier):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload or make_payload()


@pytest.fixture
def generator():
    return StubGenerator()
