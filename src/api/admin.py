# coding: utf-8
"""
Admin API endpoints for manual payment confirmation
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_admin_user
from src.core.exceptions import InvalidArgument
from src.database import crud
from src.database.engine import get_session
from src.database.models import PaymentStatus, User
from src.services import payment_service
from src.services.subscription_state import subscription_view


router = APIRouter(prefix="/admin", tags=["admin"])


class PaymentActionRequest(BaseModel):
    """Optional admin notes on confirm/cancel"""

    notes: Optional[str] = None


@router.get("/payment-requests")
async def list_payment_requests(
    status: Optional[str] = None,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """All payment requests, optionally filtered by status"""
    if status is not None:
        try:
            status = PaymentStatus(status)
        except ValueError:
            raise InvalidArgument(f"Invalid status: {status}", field="status")

    requests = await crud.get_payment_requests(session, status=status)
    return {
        "payment_requests": [payment_service.payment_request_to_dict(r) for r in requests]
    }


@router.post("/payment-requests/{request_id}/confirm")
async def confirm_payment_request(
    request_id: int,
    body: Optional[PaymentActionRequest] = None,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Confirm payment and apply the subscription to the user"""
    payment_request, user = await payment_service.confirm_payment(
        session, request_id, admin_id=admin.id, notes=body.notes if body else None
    )
    return {
        "success": True,
        "payment_request": payment_service.payment_request_to_dict(payment_request),
        "user": {
            "id": user.id,
            "email": user.email,
            **subscription_view(user, payment_request.completed_at),
        },
    }


@router.post("/payment-requests/{request_id}/cancel")
async def cancel_payment_request(
    request_id: int,
    body: Optional[PaymentActionRequest] = None,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Cancel payment request (no subscription change)"""
    payment_request = await payment_service.cancel_payment(
        session, request_id, admin_id=admin.id, notes=body.notes if body else None
    )
    return {
        "success": True,
        "payment_request": payment_service.payment_request_to_dict(payment_request),
    }
