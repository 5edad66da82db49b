"""
FastAPI dependencies.

Bearer-token authentication and the shared ledger/planning services.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from balanca.app.core.jwt import decode_access_token
from balanca.app.core.locks import build_lock_manager
from balanca.app.db.session import get_db, AsyncSessionLocal
from balanca.app.domain.ledger.ledger_engine import LedgerEngine
from balanca.app.domain.planning.planned_expense_service import PlannedExpenseService
from balanca.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    1. Validates JWT token signature and expiry
    2. Verifies the user still exists and is active (real-time check)

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if authentication fails, 403 if the user is inactive
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User.is_active).where(User.id == user_id))
    is_active = result.scalar_one_or_none()

    if is_active is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return payload


@lru_cache
def get_ledger_engine() -> LedgerEngine:
    """Process-wide ledger engine bound to the application database."""
    return LedgerEngine(AsyncSessionLocal, build_lock_manager())


@lru_cache
def get_planned_expense_service() -> PlannedExpenseService:
    """Process-wide planned expense service bound to the application database."""
    return PlannedExpenseService(AsyncSessionLocal)
