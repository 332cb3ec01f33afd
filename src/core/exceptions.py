"""
Error hierarchy of the signal engine.

Every error carries a stable `code`, a user-facing `message` and a `retryable`
flag. The API layer maps `http_status` and `to_dict()` straight to responses.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class SignalEngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str = "", **extra: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        for key, value in self.extra.items():
            payload[key] = value.isoformat() if isinstance(value, datetime) else value
        return payload


class InvalidArgument(SignalEngineError):
    """Bad plan, period, timeframe or action value."""

    code = "invalid_argument"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.field = field


class Unauthorized(SignalEngineError):
    code = "unauthorized"
    http_status = 401


class Forbidden(SignalEngineError):
    code = "forbidden"
    http_status = 403


class NotFound(SignalEngineError):
    code = "not_found"
    http_status = 404


class InvalidStateTransition(SignalEngineError):
    """Entity is not in a state that allows the requested transition."""

    code = "invalid_state"
    http_status = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, current_status=current_status)
        self.current_status = current_status


class ConcurrencyConflict(SignalEngineError):
    """Per-user lock or optimistic version check lost - retry immediately."""

    code = "concurrency_conflict"
    http_status = 409
    retryable = True


class CooldownActive(SignalEngineError):
    """Next generation allowed only after the tier cooldown elapses."""

    code = "cooldown_active"
    http_status = 429
    retryable = True

    def __init__(self, remaining_minutes: int, next_generation_time: datetime):
        super().__init__(
            f"Please wait {remaining_minutes} minutes before generating another signal",
            remaining_minutes=remaining_minutes,
            next_generation_time=next_generation_time,
        )
        self.remaining_minutes = remaining_minutes
        self.next_generation_time = next_generation_time


class DailyLimitReached(SignalEngineError):
    code = "daily_limit_reached"
    http_status = 429
    retryable = True

    def __init__(self, message: str, daily_limit: int):
        super().__init__(message, daily_limit=daily_limit, credits_remaining=0)
        self.daily_limit = daily_limit


class MonthlyLimitReached(SignalEngineError):
    code = "monthly_limit_reached"
    http_status = 429
    retryable = True

    def __init__(self, message: str, monthly_limit: int):
        super().__init__(message, monthly_limit=monthly_limit, credits_remaining=0)
        self.monthly_limit = monthly_limit


class ExternalGenerationFailure(SignalEngineError):
    """Signal model failed or timed out; reserved credit was returned."""

    code = "generation_failed"
    http_status = 503
    retryable = True


class MarketClosed(SignalEngineError):
    """Signals are only generated while the gold market trades."""

    code = "market_closed"
    http_status = 400
    retryable = True

    def __init__(self, timezone: str):
        super().__init__(
            "Market is currently closed. Trading signals are only available during market hours.",
            market_status="closed",
            timezone=timezone,
        )
