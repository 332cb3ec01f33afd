"""
Core module - derived states and the error hierarchy shared by the stack.
"""

from src.core.enums import SubscriptionState, GateDecision
from src.core.exceptions import (
    SignalEngineError,
    InvalidArgument,
    Unauthorized,
    Forbidden,
    NotFound,
    InvalidStateTransition,
    ConcurrencyConflict,
    CooldownActive,
    DailyLimitReached,
    MonthlyLimitReached,
    ExternalGenerationFailure,
)

__all__ = [
    "SubscriptionState",
    "GateDecision",
    "SignalEngineError",
    "InvalidArgument",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "InvalidStateTransition",
    "ConcurrencyConflict",
    "CooldownActive",
    "DailyLimitReached",
    "MonthlyLimitReached",
    "ExternalGenerationFailure",
]
