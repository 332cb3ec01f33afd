"""
Database engine and session factories for NTL Signals

The API, the credit gate and the subscription sweep all share one lazily
created AsyncEngine. Tests bind the same session settings to their own engine
through build_session_maker().
"""

from typing import Any, AsyncGenerator, Dict

from loguru import logger

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT


engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def engine_options(database_url: str, environment: str) -> Dict[str, Any]:
    """
    Keyword arguments for create_async_engine()

    SQLite (local runs) keeps SQLAlchemy's default pool; server databases get
    a pre-pinged queue pool sized by environment.
    """
    if database_url.startswith("sqlite"):
        return {"echo": False, "connect_args": {"check_same_thread": False}}

    is_production = environment == "production"
    connect_args: Dict[str, Any] = {}
    if database_url.startswith("postgresql+asyncpg"):
        connect_args = {
            "statement_cache_size": 0,
            "server_settings": {"application_name": "ntl_signals", "jit": "off"},
        }

    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": 10 if is_production else 5,
        "max_overflow": 20 if is_production else 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "echo": False,  # SQL goes through loguru, not echo
        "connect_args": connect_args,
    }


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory with the settings every caller relies on

    expire_on_commit stays off: the gate hands User and Signal rows back to
    the API after committing, and async sessions cannot lazy-load them.
    """
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global engine

    if engine is None:
        engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL, ENVIRONMENT))
        logger.info(f"Database engine created | Environment: {ENVIRONMENT} | Dialect: {engine.dialect.name}")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = build_session_maker(get_engine())

    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session

    Usage in routes:
        async def route(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session rolled back: {e}")
            raise


async def dispose_engine() -> None:
    """Close pooled connections (API shutdown, end of the cron sweep)"""
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """Round-trip a SELECT 1 for /health"""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.exception(f"Database connection check failed: {e}")
        return False
