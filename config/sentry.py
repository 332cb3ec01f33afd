# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT
from src.core.exceptions import SignalEngineError


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Features:
    - Automatic error capture and reporting
    - Performance monitoring (transactions)
    - Environment separation (dev/prod)
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,  # 10% in prod, 100% in dev
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Filter events before sending to Sentry

    Drops 4xx engine errors, auth headers and user emails.
    """
    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']

        if isinstance(exc_value, KeyboardInterrupt):
            return None

        # Exhausted credits, cooldowns and closed markets are client outcomes
        if isinstance(exc_value, SignalEngineError) and exc_value.http_status < 500:
            return None

    if event.get('request'):
        headers = event['request'].get('headers', {})
        if 'Authorization' in headers:
            headers['Authorization'] = '[Filtered]'
        if 'authorization' in headers:
            headers['authorization'] = '[Filtered]'

    if event.get('user') and 'email' in event['user']:
        event['user']['email'] = '[Filtered]'

    return event


def set_user_context(user_id: int, tier: str = None):
    """
    Set user context for Sentry events

    Args:
        user_id: Database user ID
        tier: Subscription tier (optional)
    """
    sentry_sdk.set_user({"id": str(user_id)})
    if tier:
        sentry_sdk.set_tag("subscription_tier", tier)

