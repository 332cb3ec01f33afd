# coding: utf-8
"""
Signal API endpoints

Handles:
- Signal generation through the credit & cooldown gate
- Signal history (paid plans)
- Outcome reporting for closed signals
- Credit and subscription status views
- Gold market hours
"""

from datetime import datetime, UTC
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user
from src.api.limiter import limiter
from src.cache.user_locks import create_lock_manager
from src.core.enums import SubscriptionState
from src.core.exceptions import Forbidden
from src.database import crud
from src.database.engine import get_session, get_session_maker
from src.database.models import User
from src.services.credit_gate import CreditGate, signal_to_dict
from src.services.market_hours import market_status
from src.services.review_challenge import ReviewChallengeService
from src.services.signal_generator import OpenAISignalGenerator
from src.services.subscription_state import resolve_state, subscription_view


router = APIRouter(tags=["signals"])


# Lazily built so Redis availability is known (lifespan runs first)
_credit_gate: Optional[CreditGate] = None


def get_credit_gate() -> CreditGate:
    """Dependency returning the process-wide credit gate"""
    global _credit_gate
    if _credit_gate is None:
        _credit_gate = CreditGate(
            get_session_maker(),
            OpenAISignalGenerator(),
            lock_manager=create_lock_manager(),
        )
    return _credit_gate


# ===========================
# REQUEST MODELS
# ===========================


class SignalGenerationRequest(BaseModel):
    """Request to generate a new signal"""

    timeframe: str  # "5M" | "15M" | "30M" | "1H" | "4H" | "1D" | "1W"


class SignalActionRequest(BaseModel):
    """Outcome reported by the user"""

    action: str  # "successful" | "unsuccessful" | "didnt_take"


# ===========================
# ENDPOINTS
# ===========================


@router.post("/signal-generation")
@limiter.limit("20/minute")
async def generate_signal(
    request: Request,
    body: SignalGenerationRequest,
    user: User = Depends(get_current_user),
    gate: CreditGate = Depends(get_credit_gate),
) -> Dict[str, Any]:
    """
    Generate a signal if the user's credits and cooldown allow it

    Errors:
        429 cooldown_active / daily_limit_reached / monthly_limit_reached
        400 market_closed
        409 concurrency_conflict
        503 generation_failed
    """
    result = await gate.request_signal(user.id, body.timeframe)
    return result.to_dict()


@router.get("/signals")
async def list_signals(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """50 most recent signals (paid plans only)"""
    state = resolve_state(user, datetime.now(UTC))
    if not SubscriptionState.has_paid_access(state):
        raise Forbidden("Signal history is available on paid plans. Please upgrade.")

    signals = await crud.get_user_signals(session, user.id, limit=50)
    return {"signals": [signal_to_dict(signal) for signal in signals]}


@router.patch("/signals/{signal_id}/action")
async def report_signal_action(
    signal_id: int,
    body: SignalActionRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Record the outcome of a closed signal"""
    signal = await ReviewChallengeService.record_user_action(session, user, signal_id, body.action)
    return {"success": True, "user_action": signal.user_action}


@router.get("/credits")
async def get_credits(
    user: User = Depends(get_current_user),
    gate: CreditGate = Depends(get_credit_gate),
) -> Dict[str, Any]:
    """Credit usage, limits and cooldown of the current user"""
    return gate.credit_status(user)


@router.get("/subscription")
async def get_subscription(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    """Subscription state of the current user"""
    return subscription_view(user, datetime.now(UTC))


@router.get("/market-status")
async def get_market_status() -> Dict[str, Any]:
    """Whether XAUUSD is trading now (public)"""
    return market_status(datetime.now(UTC))
