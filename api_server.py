"""
FastAPI Server for NTL Signals
Serves the signal, subscription and payment endpoints for the web app
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.config import validate_config, WEBAPP_URL, ENVIRONMENT
from config.logging import setup_logging
from config.sentry import init_sentry
from src.api.limiter import limiter
from src.api.router import router as api_router
from src.cache.redis_manager import get_redis_manager
from src.core.exceptions import SignalEngineError
from src.database.engine import dispose_engine, check_connection
from src.tasks.subscription_checker import SubscriptionCheckScheduler

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting NTL Signals API Server...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head

    redis_manager = get_redis_manager()
    await redis_manager.initialize()

    subscription_scheduler = SubscriptionCheckScheduler()
    subscription_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down NTL Signals API Server...")

    subscription_scheduler.stop()
    await redis_manager.close()

    await dispose_engine()
    logger.info("Database connections closed")


app = FastAPI(
    title="NTL Signals API",
    description="Subscription-based trading signals",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiter state + default per-IP limit on every endpoint
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# CORS for the web frontend
# SECURITY: exact origins only, no wildcards
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if WEBAPP_URL and WEBAPP_URL not in allowed_origins:
    allowed_origins.append(WEBAPP_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Add security headers to every response
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    if ENVIRONMENT == "production" and request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


# All API endpoints live under /api
app.include_router(api_router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    return {
        "service": "NTL Signals API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


# Health check endpoint
@app.get("/health")
async def health():
    """
    Database round-trip plus the lock backend in use

    Redis is optional: without it generation locks are per process.
    """
    database_ok = await check_connection()
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": database_ok,
        "redis_locks": get_redis_manager().is_available(),
    }


@app.exception_handler(SignalEngineError)
async def signal_engine_exception_handler(request: Request, exc: SignalEngineError):
    """
    Translate engine errors to JSON with their HTTP status
    """
    if exc.http_status >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    elif exc.http_status not in (401, 429):
        logger.warning(f"{exc.code}: {exc.message}")

    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code and detail
    """
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content)


# Error handler for unexpected exceptions (persistence failures end up here)
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": str(exc) if app.debug else "An error occurred",
            "retryable": False,
        },
    )


if __name__ == "__main__":
    import uvicorn

    validate_config()
    logger.info("Configuration validated successfully")

    # SECURITY: listen on localhost only, expose through a reverse proxy
    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",
        port=int(os.getenv("API_PORT", "8003")),
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
