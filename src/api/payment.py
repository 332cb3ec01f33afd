# coding: utf-8
"""
Payment request API endpoints

Handles:
- Upgrade payment request creation (priced, reference code assigned)
- User's payment request history
- WhatsApp confirmation link for a request
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user
from src.api.limiter import limiter
from src.database import crud
from src.database.engine import get_session
from src.database.models import User
from src.services import payment_service


router = APIRouter(prefix="/payment-requests", tags=["payment"])


# ===========================
# REQUEST MODELS
# ===========================


class CreatePaymentRequest(BaseModel):
    """Request to upgrade"""

    plan: str  # "starter_trader" | "pro_trader"
    period: int  # 1, 3, or 12
    whatsapp_number: Optional[str] = Field(default=None, max_length=32)  # user contact, optional


# ===========================
# ENDPOINTS
# ===========================


@router.post("")
@limiter.limit("10/minute")
async def create_payment_request(
    request: Request,
    body: CreatePaymentRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create a pending payment request

    Returns:
        {"payment_request": {...}, "pricing": {...}}
    """
    payment_request, quote = await payment_service.create_payment_request(
        session, user, body.plan, body.period, whatsapp_number=body.whatsapp_number
    )
    return {
        "payment_request": payment_service.payment_request_to_dict(payment_request),
        "pricing": quote.to_dict(),
    }


@router.get("/me")
async def get_my_payment_requests(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Payment requests of the current user, newest first"""
    requests = await crud.get_user_payment_requests(session, user.id)
    return {
        "payment_requests": [payment_service.payment_request_to_dict(r) for r in requests]
    }


@router.post("/{request_id}/whatsapp-link")
async def get_whatsapp_link(
    request_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """WhatsApp link prefilled with the payment details (owner only)"""
    return await payment_service.get_whatsapp_link(session, request_id, user)
