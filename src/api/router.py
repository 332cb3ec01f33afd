"""
FastAPI Router for the NTL Signals API
"""

from fastapi import APIRouter

# Import sub-routers
from src.api.signals import router as signals_router
from src.api.payment import router as payment_router
from src.api.admin import router as admin_router
from src.api.notifications import router as notifications_router
from src.api.config import router as config_router


# Main router
router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(signals_router)  # Signal generation, history, credits, subscription
router.include_router(payment_router)  # Upgrade payment requests
router.include_router(admin_router)  # Manual payment confirmation
router.include_router(notifications_router)  # Review challenge
router.include_router(config_router)  # Public config endpoints (pricing, limits)
