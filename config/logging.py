# coding: utf-8
"""
Loguru setup for the NTL Signals API and the subscription cron job

Sinks:
    stdout            everything at LOG_LEVEL
    signals_*.log     everything at DEBUG, rotated daily
    audit_*.log       credit gate, payment and subscription sweep lines only
    Sentry            ERROR and above, when SENTRY_DSN is set
"""
import logging
import sys
from pathlib import Path

import sentry_sdk
from loguru import logger

from config.config import ENVIRONMENT, LOG_DIR, LOG_LEVEL, SENTRY_DSN


AUDIT_TAGS = ("[GATE]", "[PAYMENT]", "[SUBSCRIPTION-CHECKER]")

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def is_audit_record(record) -> bool:
    """Lines that trace credits, payments or tier changes"""
    return record["message"].startswith(AUDIT_TAGS)


def setup_logging(log_files: bool = True) -> None:
    """
    Configure loguru sinks

    Args:
        log_files: Also write rotated files under LOG_DIR (the cron job
            running in a read-only container turns this off)
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=LOG_LEVEL,
        colorize=True,
    )

    if log_files:
        logs_dir = Path(LOG_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)

        logger.add(
            logs_dir / "signals_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
            encoding="utf-8",
        )

        # Credit and payment trail, kept for disputes
        logger.add(
            logs_dir / "audit_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="INFO",
            filter=is_audit_record,
            rotation="00:00",
            retention="90 days",
            compression="zip",
            encoding="utf-8",
        )

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)

    logger.info(f"NTL Signals logging ready | Environment: {ENVIRONMENT} | Level: {LOG_LEVEL}")


def sentry_sink(message):
    """
    Forward ERROR/CRITICAL records to Sentry

    A record carrying an exception is sent once, as the exception.
    """
    record = message.record

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
        return

    sentry_sdk.capture_message(
        record["message"],
        level="fatal" if record["level"].name == "CRITICAL" else "error",
        extras={
            "module": record["name"],
            "function": record["function"],
            "line": record["line"],
        },
    )
