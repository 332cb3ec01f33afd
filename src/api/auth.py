# coding: utf-8
"""
Bearer token authentication for the API

Tokens are issued by the external auth service; this module only verifies
them. Header format: "Authorization: Bearer <jwt>", `sub` = user id.
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import JWT_ALGORITHM, JWT_SECRET
from config.sentry import set_user_context
from src.core.exceptions import Forbidden, Unauthorized
from src.database.crud import get_user_by_id
from src.database.engine import get_session
from src.database.models import SubscriptionTier, User


def create_access_token(user_id: int, expires_minutes: int = 60 * 24) -> str:
    """
    Issue a bearer token (dev tooling and tests)

    Args:
        user_id: Database user ID
        expires_minutes: Token lifetime

    Returns:
        Encoded JWT
    """
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(UTC) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a bearer token

    Raises:
        Unauthorized: invalid, expired or missing `sub`
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise Unauthorized(f"Invalid token: {e}")

    if not payload.get("sub"):
        raise Unauthorized("Missing subject in token")

    return payload


async def get_current_user(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    FastAPI dependency returning the authenticated user

    Usage:
        @router.get("/credits")
        async def credits(user: User = Depends(get_current_user)):
            ...
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Authentication required")

    payload = decode_access_token(authorization[7:])

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise Unauthorized("Invalid token subject")

    user = await get_user_by_id(session, user_id)
    if user is None:
        logger.warning(f"Token for unknown user {user_id}")
        raise Unauthorized("User not found")

    set_user_context(user.id, user.subscription_tier)
    return user


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Dependency allowing admins only"""
    if user.tier != SubscriptionTier.ADMIN:
        raise Forbidden("Admin access required")
    return user
