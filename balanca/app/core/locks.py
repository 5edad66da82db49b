"""
Per-owner locks for the ledger engine.

The balance read-modify-write of one owner is a critical section keyed
by (owner_type, owner_id). Locks are always taken in sorted key order so
two operations touching the same pair of owners cannot deadlock.

Two backends:
- LocalOwnerLocks: asyncio locks, one process.
- RedisOwnerLocks: Redis locks, shared by every process using the same Redis.

Row-level ``SELECT ... FOR UPDATE`` inside the unit of work still applies
on top of either backend.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Tuple

from redis.exceptions import LockError

from balanca.app.core.config import settings
from balanca.app.core.exceptions import ConsistencyFailureError

logger = logging.getLogger("balanca.ledger")

OwnerKey = Tuple[str, int]


def owner_key(owner_type, owner_id: int) -> OwnerKey:
    """Build a lock key from an OwnerType (or its string value) and an id."""
    return (getattr(owner_type, "value", owner_type), int(owner_id))


class OwnerLockManager:
    """Base class: acquires every requested owner lock in a fixed order."""

    @asynccontextmanager
    async def hold(self, keys: Iterable[OwnerKey]) -> AsyncIterator[List[OwnerKey]]:
        """
        Hold the locks for all given owners.

        Usage:
            async with locks.hold([owner_key(OwnerType.USER, 1)]):
                ...

        Args:
            keys: Owner keys; duplicates are collapsed

        Yields:
            The keys in acquisition order
        """
        ordered = sorted(set(keys))
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self._lock(key))
            yield ordered

    def _lock(self, key: OwnerKey):
        raise NotImplementedError


class LocalOwnerLocks(OwnerLockManager):
    """
    In-process locks. One asyncio.Lock per owner per event loop.

    An entry lives only while some task holds or waits for it, so the map
    stays as small as the set of owners currently in flight.
    """

    def __init__(self):
        self._locks: Dict[tuple, asyncio.Lock] = {}
        self._users: Dict[tuple, int] = {}

    @property
    def active_count(self) -> int:
        """Owners with a task holding or waiting for their lock."""
        return len(self._locks)

    @asynccontextmanager
    async def _lock(self, key: OwnerKey):
        slot = (asyncio.get_running_loop(), key)
        lock = self._locks.get(slot)
        if lock is None:
            lock = self._locks[slot] = asyncio.Lock()
        self._users[slot] = self._users.get(slot, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[slot] -= 1
            if not self._users[slot]:
                del self._users[slot]
                del self._locks[slot]

    def is_locked(self, key: OwnerKey) -> bool:
        lock = self._locks.get((asyncio.get_running_loop(), key))
        return lock is not None and lock.locked()


class RedisOwnerLocks(OwnerLockManager):
    """
    Distributed locks backed by Redis.

    ``timeout`` bounds how long acquisition may wait. The lock itself
    expires after ``lease``, which defaults to enough time for every
    retry of one unit of work.
    """

    def __init__(
        self,
        client,
        timeout: float = None,
        lease: float = None,
        prefix: str = "balanca:ledger:owner"
    ):
        self.client = client
        self.timeout = timeout or settings.ledger_lock_timeout_seconds
        self.lease = lease or self.timeout * (settings.ledger_max_retries + 1)
        self.prefix = prefix

    @asynccontextmanager
    async def _lock(self, key: OwnerKey):
        owner_type, owner_id = key
        lock = self.client.lock(
            f"{self.prefix}:{owner_type}:{owner_id}",
            timeout=self.lease,
            blocking_timeout=self.timeout,
        )
        if not await lock.acquire():
            raise ConsistencyFailureError(f"owner lock {owner_type}:{owner_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held; the unit of work has already finished.
                logger.warning(
                    "Owner lock expired before release",
                    extra={"owner_type": owner_type, "owner_id": owner_id}
                )


def build_lock_manager(backend: str = None) -> OwnerLockManager:
    """
    Create the lock manager configured by LEDGER_LOCK_BACKEND.

    Args:
        backend: "local" or "redis"; defaults to the configured backend

    Returns:
        OwnerLockManager instance
    """
    backend = (backend or settings.ledger_lock_backend).lower()
    if backend == "redis":
        from balanca.app.core import redis_client as redis_client_module
        return RedisOwnerLocks(redis_client_module.redis_client)
    if backend == "local":
        return LocalOwnerLocks()
    raise ValueError(f"Unknown ledger lock backend: {backend}")
