"""
Database models for NTL Signals

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, date, UTC
from typing import Optional, List, Dict, Any
from enum import Enum
from decimal import Decimal

from sqlalchemy import (
    String,
    Text,
    Integer,
    Float,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    JSON,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp

    Naive values are treated as UTC on write; values read back are always
    aware UTC (SQLite drops tzinfo otherwise).
    """

    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ===========================
# ENUMS
# ===========================


class SubscriptionTier(str, Enum):
    """Subscription tier levels"""

    FREE = "free"  # 2 signals/day, 90 min cooldown
    STARTER_TRADER = "starter_trader"  # 10 signals/day, 30 min cooldown
    PRO_TRADER = "pro_trader"  # Unlimited, 15 min cooldown
    ADMIN = "admin"  # Unlimited, no cooldown, never expires


class PaymentStatus(str, Enum):
    """Manual payment request status"""

    PENDING = "pending"  # Created by user, awaiting admin confirmation
    COMPLETED = "completed"  # Confirmed by admin, subscription applied
    CANCELLED = "cancelled"  # Cancelled by admin


class SignalDirection(str, Enum):
    """Trade direction"""

    BUY = "BUY"
    SELL = "SELL"


class SignalStatus(str, Enum):
    """Signal lifecycle (moved by the market tracker)"""

    FRESH = "fresh"
    ACTIVE = "active"
    CLOSED = "closed"
    STOPPED = "stopped"


class UserAction(str, Enum):
    """Outcome reported by the user after the signal closes"""

    PENDING = "pending"
    SUCCESSFUL = "successful"
    UNSUCCESSFUL = "unsuccessful"
    DIDNT_TAKE = "didnt_take"


class Timeframe(str, Enum):
    """Chart timeframe a signal is generated for"""

    M5 = "5M"
    M15 = "15M"
    M30 = "30M"
    H1 = "1H"
    H4 = "4H"
    D1 = "1D"
    W1 = "1W"


# ===========================
# MODELS
# ===========================


class User(Base):
    """
    User model

    Tracks:
    - Identity (email, name)
    - Subscription tier and paid period dates
    - Credit counters and cooldown anchor for signal generation
    - Monthly review challenge state

    Note: `version` is an optimistic lock; every UPDATE checks and bumps it
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False, comment="Login email"
    )
    first_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="User first name"
    )
    last_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="User last name"
    )

    # Subscription
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionTier.FREE.value,
        nullable=False,
        index=True,
        comment="Tier: free, starter_trader, pro_trader, admin",
    )
    subscription_start_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, comment="Start of current paid period"
    )
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, index=True, comment="End of current paid period"
    )
    subscription_period: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Purchased period in months (1, 3, 12)"
    )
    grace_period_end_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, comment="subscription_end_date + 48h"
    )
    is_first_time_subscriber: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Eligible for first-time discount (flipped once, never reset)",
    )

    # Credits & cooldown
    daily_credits: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Signals generated today"
    )
    monthly_credits: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Signals generated this billing cycle"
    )
    max_daily_credits: Mapped[Optional[int]] = mapped_column(
        Integer, default=2, nullable=True, comment="Daily ceiling for display (NULL = unlimited)"
    )
    max_monthly_credits: Mapped[Optional[int]] = mapped_column(
        Integer, default=10, nullable=True, comment="Monthly ceiling for display (NULL = unlimited)"
    )
    last_generation_time: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, comment="Last successful generation (cooldown anchor)"
    )
    last_credit_reset: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, comment="Last time counters were reconciled"
    )

    # Review challenge
    monthly_completion_streak: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Consecutive fully reviewed cycles"
    )
    pending_discount_code: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="Unclaimed loyalty discount code"
    )
    last_discount_code: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="Last issued loyalty code (kept after claim)"
    )
    last_discount_cycle_start: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, comment="Billing cycle the last code was issued for"
    )
    last_notification_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="Local date of last pending-review notification"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        nullable=False,
        comment="User registration timestamp",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, comment="Optimistic lock counter"
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    signals = relationship(
        "TradingSignal", back_populates="user", cascade="all, delete-orphan"
    )
    payment_requests = relationship(
        "PaymentRequest",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="PaymentRequest.user_id",
    )

    @property
    def tier(self) -> SubscriptionTier:
        """Stored tier as enum (unknown values fall back to FREE)"""
        try:
            return SubscriptionTier(self.subscription_tier)
        except ValueError:
            return SubscriptionTier.FREE

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, tier={self.subscription_tier})>"


class TradingSignal(Base):
    """
    Generated trading signal

    Created by signal generation; status is moved by the market tracker,
    user_action is set once by the owner after closure.
    """

    __tablename__ = "trading_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
        comment="Owner (foreign key)",
    )

    pair: Mapped[str] = mapped_column(
        String(20), default="XAUUSD", nullable=False, comment="Instrument"
    )
    direction: Mapped[str] = mapped_column(
        String(4), nullable=False, comment="BUY or SELL"
    )
    timeframe: Mapped[str] = mapped_column(
        String(4), nullable=False, comment="5M, 15M, 30M, 1H, 4H, 1D, 1W"
    )

    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    stop_loss: Mapped[float] = mapped_column(Float, nullable=False)
    take_profit: Mapped[float] = mapped_column(
        Float, nullable=False, comment="First take profit level"
    )
    take_profits: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="[{level, price, risk_reward_ratio}] ordered by risk_reward_ratio asc",
    )
    confidence: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Model confidence 1-100"
    )
    analysis: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20),
        default=SignalStatus.FRESH.value,
        nullable=False,
        index=True,
        comment="fresh, active, closed, stopped",
    )
    user_action: Mapped[str] = mapped_column(
        String(20),
        default=UserAction.PENDING.value,
        nullable=False,
        comment="pending, successful, unsuccessful, didnt_take",
    )
    pips: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Result in pips once closed"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )

    user = relationship("User", back_populates="signals")

    __table_args__ = (
        Index("ix_trading_signals_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<TradingSignal(id={self.id}, user_id={self.user_id}, "
            f"{self.direction} {self.pair} {self.timeframe}, status={self.status})>"
        )


class PaymentRequest(Base):
    """
    Manual payment request

    Records an upgrade intent with its price breakdown. Only an admin moves it
    out of `pending`; confirming it is the only write path for paid tiers.
    """

    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
        comment="Requesting user (foreign key)",
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    requested_plan: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="starter_trader or pro_trader"
    )
    subscription_period: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Months (1, 3, 12)"
    )
    reference_code: Mapped[str] = mapped_column(
        String(20), unique=True, index=True, nullable=False, comment="PAY-XXXXXX"
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Final amount in USD"
    )
    original_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Period base price in USD"
    )
    discount_percentage: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Period + first-time discount label"
    )
    period_discount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_time_discount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, completed, cancelled",
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Admin notes")
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_by_admin_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    user = relationship("User", back_populates="payment_requests", foreign_keys=[user_id])

    def __repr__(self) -> str:
        return (
            f"<PaymentRequest(id={self.id}, ref={self.reference_code}, "
            f"status={self.status}, amount=${self.amount})>"
        )
