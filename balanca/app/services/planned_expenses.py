"""
Planned expense store.

Persistence for budgeted items and their PLANNED -> BOUGHT | CANCELLED
workflow. Transitions flush but never commit; the caller owns the unit
of work.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc, or_

from balanca.app.models.planned_expense import PlannedExpense
from balanca.app.models.group import GroupMembership
from balanca.app.models.ledger_enums import PlannedExpenseStatus, MembershipStatus
from balanca.app.core.exceptions import InvalidStateError

EDITABLE_FIELDS = frozenset({"item", "description", "estimated_price", "category", "priority", "due_date"})


async def create(db: AsyncSession, expense: PlannedExpense) -> PlannedExpense:
    db.add(expense)
    await db.flush()
    return expense


async def find_by_id(db: AsyncSession, expense_id: int, lock: bool = False) -> Optional[PlannedExpense]:
    """
    Fetch an expense, optionally with SELECT ... FOR UPDATE.

    A locked read always goes to the database so the status seen is the
    committed one.
    """
    stmt = select(PlannedExpense).where(PlannedExpense.id == expense_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _paginate(db: AsyncSession, conditions, page: int, limit: int) -> Tuple[List[PlannedExpense], int]:
    total = await db.scalar(select(func.count(PlannedExpense.id)).where(*conditions))
    result = await db.execute(
        select(PlannedExpense)
        .where(*conditions)
        .order_by(desc(PlannedExpense.created_at), desc(PlannedExpense.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def find_by_user(
    db: AsyncSession,
    user_id: int,
    status: Optional[PlannedExpenseStatus] = None,
    page: int = 1,
    limit: int = 20
) -> Tuple[List[PlannedExpense], int]:
    """Personal expenses of a user, newest first."""
    conditions = [PlannedExpense.user_id == user_id, PlannedExpense.group_id.is_(None)]
    if status is not None:
        conditions.append(PlannedExpense.status == status)
    return await _paginate(db, conditions, page, limit)


async def find_by_group(
    db: AsyncSession,
    group_id: int,
    status: Optional[PlannedExpenseStatus] = None,
    page: int = 1,
    limit: int = 20
) -> Tuple[List[PlannedExpense], int]:
    """Expenses of a group, newest first."""
    conditions = [PlannedExpense.group_id == group_id]
    if status is not None:
        conditions.append(PlannedExpense.status == status)
    return await _paginate(db, conditions, page, limit)


def require_planned(expense: PlannedExpense) -> None:
    """
    Raises:
        InvalidStateError: If the expense has left the PLANNED state
    """
    if expense.status != PlannedExpenseStatus.PLANNED:
        raise InvalidStateError(
            f"Planned expense {expense.id} is already {expense.status.value}",
            details={"expense_id": expense.id, "status": expense.status.value}
        )


async def transition_to_bought(
    db: AsyncSession,
    expense: PlannedExpense,
    actual_price: int,
    payer_id: int,
    paid_at: datetime,
    transaction_id: int
) -> PlannedExpense:
    """
    Mark an expense as bought and link it to its settling transaction.

    Ledger engine only: the debit must be part of the same unit of work.

    Raises:
        InvalidStateError: If the expense is not PLANNED
    """
    require_planned(expense)

    expense.status = PlannedExpenseStatus.BOUGHT
    expense.actual_price = actual_price
    expense.paid_by = payer_id
    expense.paid_at = paid_at
    expense.transaction_id = transaction_id

    await db.flush()
    return expense


async def update_fields(db: AsyncSession, expense: PlannedExpense, updates: dict) -> PlannedExpense:
    """
    Overwrite budget fields of a PLANNED expense.

    Raises:
        InvalidStateError: If the expense is not PLANNED
    """
    require_planned(expense)

    for name, value in updates.items():
        setattr(expense, name, value)

    await db.flush()
    return expense


async def transition_to_cancelled(db: AsyncSession, expense: PlannedExpense) -> PlannedExpense:
    """
    Raises:
        InvalidStateError: If the expense is not PLANNED
    """
    require_planned(expense)

    expense.status = PlannedExpenseStatus.CANCELLED

    await db.flush()
    return expense


async def find_overdue_for_user(db: AsyncSession, user_id: int, as_of: datetime) -> List[PlannedExpense]:
    """
    PLANNED expenses due before ``as_of`` that the user is responsible for:
    their personal ones plus those of every group where they are an
    active member. Earliest due first.
    """
    active_groups = select(GroupMembership.group_id).where(
        GroupMembership.user_id == user_id,
        GroupMembership.status == MembershipStatus.ACTIVE
    )

    result = await db.execute(
        select(PlannedExpense)
        .where(
            PlannedExpense.status == PlannedExpenseStatus.PLANNED,
            PlannedExpense.due_date.is_not(None),
            PlannedExpense.due_date < as_of,
            or_(
                (PlannedExpense.user_id == user_id) & PlannedExpense.group_id.is_(None),
                PlannedExpense.group_id.in_(active_groups)
            )
        )
        .order_by(PlannedExpense.due_date, PlannedExpense.id)
    )
    return list(result.scalars().all())
