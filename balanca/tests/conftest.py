"""
Centralized Test Configuration.

Each test gets its own SQLite database file so concurrent sessions use
separate connections, the way they would against PostgreSQL.
"""

import asyncio
import time
import uuid

import pytest
from httpx import AsyncClient, ASGITransport
from redis.exceptions import LockError
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool, Pool

from balanca.app.main import app
from balanca.app.db.session import get_db, Base, make_session_factory
from balanca.app.core.dependencies import get_ledger_engine, get_planned_expense_service
from balanca.app.core.jwt import create_access_token
from balanca.app.core.locks import LocalOwnerLocks
import balanca.app.core.redis_client as redis_client_module
from balanca.app.domain.ledger.ledger_engine import LedgerEngine
from balanca.app.domain.planning.planned_expense_service import PlannedExpenseService
from balanca.app.models.user import User
from balanca.app.models.group import Group, GroupMembership
from balanca.app.models.ledger_enums import MembershipRole, MembershipStatus, TransactionType


# Event handler to enable foreign keys for SQLite
@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockLock:
    """Minimal stand-in for redis.asyncio.lock.Lock."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.token = uuid.uuid4().hex

    async def acquire(self):
        deadline = time.monotonic() + (self.blocking_timeout or 0)
        while self.name in self.redis.store:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(0.01)
        self.redis.store[self.name] = self.token
        return True

    async def release(self):
        if self.redis.store.get(self.name) != self.token:
            raise LockError("Cannot release a lock that's no longer owned")
        del self.redis.store[self.name]


class MockRedis:
    def __init__(self):
        self.store = {}
        self.locks_issued = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    def lock(self, name, timeout=None, blocking_timeout=None):
        lock = MockLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)
        self.locks_issued.append(lock)
        return lock

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Shared session for fixture data creation and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(session_factory):
    return LedgerEngine(session_factory, LocalOwnerLocks(), max_retries=5, backoff_ms=5)


@pytest.fixture
def planner(session_factory):
    return PlannedExpenseService(session_factory)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, ledger, planner, mock_redis):
    """Point the app at the per-test database, ledger and Redis stand-in."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger_engine] = lambda: ledger
    app.dependency_overrides[get_planned_expense_service] = lambda: planner
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class Seed:
    """
    Creates committed users, groups and memberships.

    A starting balance is funded through the ledger (a personal credit or
    external income), so seeded owners reconcile like any other.
    """

    def __init__(self, session_factory, ledger):
        self.session_factory = session_factory
        self.ledger = ledger
        self._counter = 0

    async def user(self, balance: int = 0, is_active: bool = True) -> int:
        self._counter += 1
        async with self.session_factory() as session:
            user = User(
                phone_number=f"+1555000{self._counter:04d}",
                first_name=f"User{self._counter}",
                is_active=is_active
            )
            session.add(user)
            await session.commit()
            user_id = user.id
        if balance:
            await self.ledger.record_personal_transaction(
                user_id, TransactionType.CREDIT, balance, "opening_balance", "seed"
            )
        return user_id

    async def group(self, created_by: int, balance: int = 0, members=()) -> int:
        """Create a group; the creator and ``members`` become active members."""
        async with self.session_factory() as session:
            group = Group(name=f"Group by {created_by}", created_by=created_by)
            session.add(group)
            await session.flush()
            session.add(GroupMembership(
                user_id=created_by, group_id=group.id,
                role=MembershipRole.MANAGER, status=MembershipStatus.ACTIVE
            ))
            for member_id in members:
                session.add(GroupMembership(
                    user_id=member_id, group_id=group.id,
                    role=MembershipRole.MEMBER, status=MembershipStatus.ACTIVE
                ))
            await session.commit()
            group_id = group.id
        if balance:
            await self.ledger.record_external_income(created_by, group_id, balance, "seed")
        return group_id

    async def membership(self, user_id: int, group_id: int, status: MembershipStatus) -> None:
        async with self.session_factory() as session:
            session.add(GroupMembership(user_id=user_id, group_id=group_id, status=status))
            await session.commit()


@pytest.fixture
def seed(session_factory, ledger):
    return Seed(session_factory, ledger)


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""
    def _headers(user_id: int) -> dict:
        token = create_access_token(data={"sub": str(user_id), "user_id": user_id})
        return {"Authorization": f"Bearer {token}"}
    return _headers
