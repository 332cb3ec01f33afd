"""
Tests for payment requests and admin confirmation
"""

import re
import pytest
from datetime import datetime, timedelta, UTC
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from src.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidArgument,
    InvalidStateTransition,
    NotFound,
)
from src.database import crud
from src.database.models import PaymentStatus, SubscriptionTier, User
from src.services import payment_service
from src.services.pricing_service import compute_price


REFERENCE_RE = re.compile(r"^PAY-[0-9A-F]{6}$")


async def reload(session, user_id: int) -> User:
    return await crud.get_user_by_id(session, user_id)


def test_reference_code_format():
    codes = {payment_service.generate_reference_code() for _ in range(50)}

    assert all(REFERENCE_RE.match(code) for code in codes)
    assert len(codes) > 1


def test_whatsapp_message():
    message = payment_service.build_whatsapp_message(
        "jane@example.com", "pro_trader", 12, Decimal("630.00"), "PAY-1A2B3C"
    )

    assert message.startswith("Hi! I want to upgrade my NTL Trading Platform subscription.")
    assert "📧 Email: jane@example.com" in message
    assert "📦 Plan: Pro Trader" in message
    assert "⏱️ Period: 1 Year" in message
    assert "💵 Amount: $630.00" in message
    assert "🔖 Reference: PAY-1A2B3C" in message
    assert message.endswith("Please guide me through the payment process.")


def test_whatsapp_url_strips_number_and_encodes_text():
    url = payment_service.build_whatsapp_url("+212 600-123 456", "Hi there! 50$ & more")

    assert url == "https://wa.me/212600123456?text=Hi%20there%21%2050%24%20%26%20more"


def test_compose_payment_request():
    quote = compute_price("starter_trader", 3, True)
    request = payment_service.compose_payment_request(7, "a@example.com", quote, reference_code="PAY-000001")

    assert request.status == PaymentStatus.PENDING.value
    assert request.amount == Decimal("105.30")
    assert request.original_amount == Decimal("117.00")
    assert request.discount_percentage == 30
    assert request.first_time_discount == 10


async def test_create_payment_request(db_session, make_user):
    created = await make_user(email="buyer@example.com")
    user = await reload(db_session, created.id)

    request, quote = await payment_service.create_payment_request(db_session, user, "pro_trader", 12)

    assert request.id is not None
    assert REFERENCE_RE.match(request.reference_code)
    assert request.user_email == "buyer@example.com"
    assert request.amount == Decimal("630.00")
    assert quote.discount_percentage == 55


async def test_create_payment_request_rejects_bad_period(db_session, make_user):
    created = await make_user()
    user = await reload(db_session, created.id)

    with pytest.raises(InvalidArgument):
        await payment_service.create_payment_request(db_session, user, "pro_trader", 6)

    assert await crud.get_user_payment_requests(db_session, user.id) == []


async def test_reference_collision_is_retried(db_session, make_user, monkeypatch):
    created = await make_user()
    user = await reload(db_session, created.id)
    first, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    codes = iter([first.reference_code, "PAY-ABC123"])
    monkeypatch.setattr(payment_service, "generate_reference_code", lambda: next(codes))

    user = await reload(db_session, created.id)
    second, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    assert second.reference_code == "PAY-ABC123"


async def test_second_collision_raises(db_session, make_user, monkeypatch):
    created = await make_user()
    user = await reload(db_session, created.id)
    first, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    taken = first.reference_code
    monkeypatch.setattr(payment_service, "generate_reference_code", lambda: taken)

    user = await reload(db_session, created.id)
    with pytest.raises(IntegrityError):
        await payment_service.create_payment_request(db_session, user, "starter_trader", 1)


async def test_confirm_applies_subscription(db_session, make_user):
    admin = await make_user(SubscriptionTier.ADMIN)
    created = await make_user(daily_credits=2, monthly_credits=7)
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    now = datetime(2024, 1, 31, 10, 0, tzinfo=UTC)
    confirmed, user = await payment_service.confirm_payment(
        db_session, request.id, admin_id=admin.id, notes="paid via bank transfer", now=now
    )

    assert confirmed.status == PaymentStatus.COMPLETED.value
    assert confirmed.completed_at == now
    assert confirmed.completed_by_admin_id == admin.id
    assert confirmed.notes == "paid via bank transfer"

    assert user.subscription_tier == "starter_trader"
    assert user.subscription_start_date == now
    assert user.subscription_end_date == datetime(2024, 2, 29, 10, 0, tzinfo=UTC)
    assert user.grace_period_end_date == datetime(2024, 2, 29, 10, 0, tzinfo=UTC) + timedelta(hours=48)
    assert user.subscription_period == 1
    assert user.is_first_time_subscriber is False
    assert user.max_daily_credits == 10
    assert user.max_monthly_credits == 60
    assert user.daily_credits == 0
    assert user.monthly_credits == 0


async def test_first_time_discount_only_once(db_session, make_user):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, quote = await payment_service.create_payment_request(db_session, user, "pro_trader", 1)
    assert quote.first_time_discount == 10

    await payment_service.confirm_payment(db_session, request.id)

    user = await reload(db_session, created.id)
    _, renewal = await payment_service.create_payment_request(db_session, user, "pro_trader", 1)
    assert renewal.first_time_discount == 0
    assert renewal.final_amount == Decimal("99.00")


async def test_confirm_twice_is_invalid(db_session, make_user):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 3)
    await payment_service.confirm_payment(db_session, request.id)

    with pytest.raises(InvalidStateTransition) as exc_info:
        await payment_service.confirm_payment(db_session, request.id)

    assert exc_info.value.current_status == "completed"


async def test_cancel_then_confirm_is_invalid(db_session, make_user):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    cancelled = await payment_service.cancel_payment(db_session, request.id, notes="no transfer received")
    assert cancelled.status == PaymentStatus.CANCELLED.value
    assert cancelled.notes == "no transfer received"

    with pytest.raises(InvalidStateTransition) as exc_info:
        await payment_service.confirm_payment(db_session, request.id)
    assert exc_info.value.current_status == "cancelled"

    user = await reload(db_session, created.id)
    assert user.subscription_tier == "free"
    assert user.is_first_time_subscriber is True


async def test_confirm_unknown_request(db_session):
    with pytest.raises(NotFound):
        await payment_service.confirm_payment(db_session, 404)


async def test_whatsapp_link_owner_only(db_session, make_user):
    owner = await make_user(email="owner@example.com")
    other = await make_user(email="other@example.com")
    user = await reload(db_session, owner.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "pro_trader", 3)

    link = await payment_service.get_whatsapp_link(db_session, request.id, user)
    assert link["whatsapp_url"].startswith("https://wa.me/")
    assert request.reference_code in link["message"]
    assert link["payment_details"]["reference_code"] == request.reference_code

    with pytest.raises(Forbidden):
        await payment_service.get_whatsapp_link(db_session, request.id, await reload(db_session, other.id))

    with pytest.raises(NotFound):
        await payment_service.get_whatsapp_link(db_session, 9999, user)


async def test_whatsapp_link_uses_support_number(db_session, make_user, monkeypatch):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(
        db_session, user, "starter_trader", 1, whatsapp_number="+212 600-000 111"
    )
    assert request.whatsapp_number == "+212 600-000 111"
    assert payment_service.payment_request_to_dict(request)["whatsapp_number"] == "+212 600-000 111"

    monkeypatch.setattr(payment_service, "WHATSAPP_SUPPORT_NUMBER", "+44 20-7946 0000")
    link = await payment_service.get_whatsapp_link(db_session, request.id, user)

    assert link["whatsapp_url"].startswith("https://wa.me/442079460000?text=")


# ===========================
# ADMIN ACCOUNTS
# ===========================


async def test_admin_cannot_open_payment_request(db_session, make_user):
    created = await make_user(SubscriptionTier.ADMIN)
    admin = await reload(db_session, created.id)

    with pytest.raises(Forbidden):
        await payment_service.create_payment_request(db_session, admin, "starter_trader", 1)

    assert await crud.get_user_payment_requests(db_session, created.id) == []


async def test_confirm_never_downgrades_admin(db_session, make_user):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "starter_trader", 1)

    # Promoted while the request was still pending
    user.subscription_tier = SubscriptionTier.ADMIN.value
    await db_session.commit()

    with pytest.raises(InvalidStateTransition):
        await payment_service.confirm_payment(db_session, request.id)

    user = await reload(db_session, created.id)
    assert user.subscription_tier == "admin"
    assert user.subscription_end_date is None
    assert (await crud.get_payment_request(db_session, request.id)).status == "pending"


# ===========================
# CONCURRENT UPDATES
# ===========================


async def test_confirm_version_conflict(db_session, make_user, monkeypatch):
    created = await make_user()
    user = await reload(db_session, created.id)
    request, _ = await payment_service.create_payment_request(db_session, user, "pro_trader", 1)
    request_id = request.id

    async def stale_commit():
        raise StaleDataError("users row version mismatch")

    monkeypatch.setattr(db_session, "commit", stale_commit)

    with pytest.raises(ConcurrencyConflict):
        await payment_service.confirm_payment(db_session, request_id)

    monkeypatch.undo()
    assert (await crud.get_payment_request(db_session, request_id)).status == "pending"
    user = await reload(db_session, created.id)
    assert user.subscription_tier == "free"
    assert user.is_first_time_subscriber is True
