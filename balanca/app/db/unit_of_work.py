"""
Atomic unit of work.

Every ledger operation runs inside exactly one of these scopes: a fresh
session with an explicit transaction that commits when the block exits
normally and rolls back on any exception (including task cancellation).
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Open a session and a transaction scope.

    Usage:
        async with unit_of_work(AsyncSessionLocal) as db:
            db.add(row)
            await db.flush()
        # committed here, or rolled back if the block raised

    Args:
        session_factory: Session factory bound to the ledger database

    Yields:
        AsyncSession with an open transaction
    """
    async with session_factory() as session:
        async with session.begin():
            yield session
