"""
Transaction log.

Append-only store of ledger rows. Rows are never updated; the only
query-side distinction is ``deleted_at``, which hides a row from
listings while it still counts toward the owner's balance.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case, desc

from balanca.app.models.transaction import Transaction
from balanca.app.models.ledger_enums import OwnerType, TransactionType
from balanca.app.services import balance_store


@dataclass
class ReconciliationReport:
    """Stored balance of one owner compared against its ledger history."""
    owner_type: OwnerType
    owner_id: int
    stored_balance: int
    ledger_sum: int
    latest_snapshot: Optional[int]
    transaction_count: int

    @property
    def is_consistent(self) -> bool:
        if self.stored_balance != self.ledger_sum:
            return False
        if self.latest_snapshot is None:
            return self.stored_balance == 0
        return self.latest_snapshot == self.stored_balance


def _owner_filter(owner_type: OwnerType, owner_id: int):
    return (Transaction.owner_type == owner_type, Transaction.owner_id == owner_id)


async def append(db: AsyncSession, transaction: Transaction) -> int:
    """
    Insert a ledger row and return its id.

    Flushes so the id and created_at are known before the unit commits.
    """
    db.add(transaction)
    await db.flush()
    return transaction.id


async def find_by_id(db: AsyncSession, transaction_id: int) -> Optional[Transaction]:
    result = await db.execute(
        select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.deleted_at.is_(None)
        )
    )
    return result.scalar_one_or_none()


async def find_by_owner(
    db: AsyncSession,
    owner_type: OwnerType,
    owner_id: int,
    page: int = 1,
    limit: int = 20
) -> Tuple[List[Transaction], int]:
    """
    List an owner's visible transactions, newest first.

    Returns:
        (items for the requested page, total visible rows)
    """
    conditions = (*_owner_filter(owner_type, owner_id), Transaction.deleted_at.is_(None))

    total = await db.scalar(select(func.count(Transaction.id)).where(*conditions))

    result = await db.execute(
        select(Transaction)
        .where(*conditions)
        .order_by(desc(Transaction.created_at), desc(Transaction.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def find_by_date_range(
    db: AsyncSession,
    owner_type: OwnerType,
    owner_id: int,
    start: datetime,
    end: datetime
) -> List[Transaction]:
    """Visible transactions with start <= created_at < end, oldest first."""
    result = await db.execute(
        select(Transaction)
        .where(
            *_owner_filter(owner_type, owner_id),
            Transaction.deleted_at.is_(None),
            Transaction.created_at >= start,
            Transaction.created_at < end
        )
        .order_by(Transaction.created_at, Transaction.id)
    )
    return list(result.scalars().all())


async def sum_signed_amounts(
    db: AsyncSession,
    owner_type: OwnerType,
    owner_id: int,
    before: Optional[datetime] = None
) -> int:
    """
    Fold an owner's history: credits minus debits.

    Soft-hidden rows are included. With ``before`` only rows created
    strictly earlier are counted.
    """
    signed = case(
        (Transaction.type == TransactionType.CREDIT, Transaction.amount),
        else_=-Transaction.amount
    )
    stmt = select(func.coalesce(func.sum(signed), 0)).where(*_owner_filter(owner_type, owner_id))
    if before is not None:
        stmt = stmt.where(Transaction.created_at < before)
    return int(await db.scalar(stmt))


async def latest_for_owner(
    db: AsyncSession,
    owner_type: OwnerType,
    owner_id: int
) -> Optional[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(*_owner_filter(owner_type, owner_id))
        .order_by(desc(Transaction.created_at), desc(Transaction.id))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def reconcile(db: AsyncSession, owner_type: OwnerType, owner_id: int) -> ReconciliationReport:
    """
    Compare an owner's stored balance with the fold of its transactions
    and with the snapshot on its most recent row.

    Raises:
        NotFoundError: If the owner does not exist
    """
    stored = await balance_store.get_balance(db, owner_type, owner_id)
    ledger_sum = await sum_signed_amounts(db, owner_type, owner_id)
    latest = await latest_for_owner(db, owner_type, owner_id)
    count = await db.scalar(
        select(func.count(Transaction.id)).where(*_owner_filter(owner_type, owner_id))
    )

    return ReconciliationReport(
        owner_type=OwnerType(owner_type),
        owner_id=owner_id,
        stored_balance=stored,
        ledger_sum=ledger_sum,
        latest_snapshot=latest.balance if latest else None,
        transaction_count=count or 0
    )
