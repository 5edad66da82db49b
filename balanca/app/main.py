"""
FastAPI Application Entry Point.

This is the main application file for the Balanca Ledger Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from balanca.app.core.config import settings
from balanca.app.core.observability import ObservabilityMiddleware, configure_logging
from balanca.app.core.redis_client import ping_redis, close_redis
from balanca.app.api.v1.router import router as api_v1_router
from balanca.app.db.session import engine, Base
from balanca.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from balanca.app.models.user import User
from balanca.app.models.group import Group, GroupMembership
from balanca.app.models.planned_expense import PlannedExpense
from balanca.app.models.transaction import Transaction
from balanca.app.models.audit_log import AuditLog


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables on startup.
    3. Releases database and Redis connections on shutdown.
    """
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
    if settings.ledger_lock_backend == "redis":
        await close_redis()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Ledger engine for personal and group balances",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "lock_backend": settings.ledger_lock_backend,
    }
    if settings.ledger_lock_backend == "redis" and not await ping_redis():
        health["status"] = "degraded"
    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
