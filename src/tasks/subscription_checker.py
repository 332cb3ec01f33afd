# coding: utf-8
"""
Subscription Checker - grace periods and downgrades of lapsed subscriptions.

Runs inside the API process (APScheduler, every SUBSCRIPTION_CHECK_INTERVAL_HOURS)
or once from cron.

Run: python -m src.tasks.subscription_checker

Crontab (daily):
    0 3 * * * cd /path && .venv/bin/python -m src.tasks.subscription_checker
"""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.config import SUBSCRIPTION_CHECK_INTERVAL_HOURS
from src.database.engine import get_session_maker, dispose_engine
from src.services.subscription_service import run_subscription_sweep


async def check_subscriptions(session_maker=None) -> Dict[str, Any]:
    """Run one sweep in its own session"""
    session_maker = session_maker or get_session_maker()

    async with session_maker() as session:
        results = await run_subscription_sweep(session)

    logger.info(
        f"[SUBSCRIPTION-CHECKER] grace started: {results['grace_started']}, "
        f"expiring soon: {results['expiring_soon']}, downgraded: {results['downgraded']}"
    )
    return results


class SubscriptionCheckScheduler:
    """
    APScheduler wrapper for the subscription sweep.

    Jobs:
    - subscription_check: sweep every SUBSCRIPTION_CHECK_INTERVAL_HOURS
    """

    def __init__(self, interval_hours: int = SUBSCRIPTION_CHECK_INTERVAL_HOURS, session_maker=None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.interval_hours = interval_hours
        self.session_maker = session_maker
        self._running = False

    def start(self):
        """Start scheduler."""
        if self._running:
            logger.warning("Subscription check scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._job_check,
            IntervalTrigger(hours=self.interval_hours),
            id="subscription_check",
            name="Subscription Check",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True

        logger.info(f"Subscription check scheduler started: every {self.interval_hours}h")

    def stop(self):
        """Stop scheduler."""
        if self.scheduler:
            self.scheduler.shutdown()
            self._running = False
            logger.info("Subscription check scheduler stopped")

    async def _job_check(self):
        try:
            await check_subscriptions(self.session_maker)
        except Exception as e:
            logger.exception(f"[SUBSCRIPTION-CHECKER] sweep failed: {e}")


async def main():
    """
    Cron job entry point
    """
    from config.logging import setup_logging

    setup_logging()

    logger.info("=" * 80)
    logger.info("Subscription Checker Cron Job - Starting")
    logger.info("=" * 80)

    try:
        results = await check_subscriptions()

        logger.info("=" * 80)
        logger.info("Subscription Checker Cron Job - Results:")
        logger.info(f"  - Grace periods started: {results['grace_started']}")
        logger.info(f"  - Expiring within 7 days: {results['expiring_soon']}")
        logger.info(f"  - Downgraded to free: {results['downgraded']}")
        logger.info("=" * 80)
    except Exception as e:
        logger.exception(f"Error in subscription checker cron job: {e}")
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
