"""
Planned Expense Service (Domain Logic).

Non-monetary lifecycle of planned expenses: budgeting, cancellation and
queries. Settling an expense moves money and lives in the ledger engine.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from balanca.app.core.config import settings
from balanca.app.core.exceptions import ForbiddenError, NotFoundError
from balanca.app.db.unit_of_work import unit_of_work
from balanca.app.domain.ledger.balance_calculator import validate_amount
from balanca.app.models.ledger_enums import ExpensePriority, PlannedExpenseStatus
from balanca.app.models.planned_expense import PlannedExpense
from balanca.app.models.timestamps import utcnow
from balanca.app.services import audit, membership, planned_expenses
from balanca.app.services.audit import AuditAction, AuditEntity

logger = logging.getLogger("balanca.planning")


class PlannedExpenseService:

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _create(
        self,
        user_id: int,
        item: str,
        estimated_price: int,
        category: str,
        description: Optional[str],
        priority: ExpensePriority,
        due_date: Optional[datetime],
        group_id: Optional[int]
    ) -> PlannedExpense:
        validate_amount(estimated_price, field="estimated_price")

        async with unit_of_work(self.session_factory) as db:
            if group_id is not None:
                await membership.require_group(db, group_id)
                await membership.require_active_member(db, user_id, group_id)

            expense = PlannedExpense(
                item=item,
                description=description,
                category=category,
                priority=ExpensePriority(priority),
                estimated_price=estimated_price,
                actual_price=None,
                status=PlannedExpenseStatus.PLANNED,
                user_id=user_id,
                group_id=group_id,
                paid_by=None,
                paid_at=None,
                transaction_id=None,
                due_date=due_date
            )
            await planned_expenses.create(db, expense)
            await audit.log_event(
                db,
                entity_type=AuditEntity.PLANNED_EXPENSE,
                entity_id=expense.id,
                action=AuditAction.CREATE,
                performed_by=user_id,
                changes=audit.diff({}, {
                    "item": item,
                    "estimated_price": estimated_price,
                    "status": PlannedExpenseStatus.PLANNED.value,
                }),
                group_id=group_id
            )

        logger.info(
            "Planned expense created",
            extra={"expense_id": expense.id, "user_id": user_id, "group_id": group_id}
        )
        return expense

    async def create_personal_expense(
        self,
        user_id: int,
        item: str,
        estimated_price: int,
        category: str,
        description: Optional[str] = None,
        priority: ExpensePriority = ExpensePriority.MEDIUM,
        due_date: Optional[datetime] = None
    ) -> PlannedExpense:
        """
        Budget an expense for the user's own balance.

        Raises:
            InvalidAmountError: If estimated_price is not a positive integer
        """
        return await self._create(
            user_id, item, estimated_price, category, description, priority, due_date, None
        )

    async def create_group_expense(
        self,
        user_id: int,
        group_id: int,
        item: str,
        estimated_price: int,
        category: str,
        description: Optional[str] = None,
        priority: ExpensePriority = ExpensePriority.MEDIUM,
        due_date: Optional[datetime] = None
    ) -> PlannedExpense:
        """
        Budget an expense for a group.

        Raises:
            InvalidAmountError: If estimated_price is not a positive integer
            NotFoundError: If the group does not exist
            ForbiddenError: If the user is not an active member
        """
        return await self._create(
            user_id, item, estimated_price, category, description, priority, due_date, group_id
        )

    @staticmethod
    async def _require_access(db: AsyncSession, user_id: int, expense: PlannedExpense) -> None:
        if expense.group_id is None:
            if expense.user_id != user_id:
                raise ForbiddenError(
                    "Planned expense belongs to another user",
                    details={"expense_id": expense.id}
                )
            return
        await membership.require_active_member(db, user_id, expense.group_id)

    async def get_expense(self, user_id: int, expense_id: int) -> PlannedExpense:
        """
        Raises:
            NotFoundError: If the expense does not exist
            ForbiddenError: If the user is neither its owner nor an active
                member of its group
        """
        async with self.session_factory() as db:
            expense = await planned_expenses.find_by_id(db, expense_id)
            if expense is None:
                raise NotFoundError("PlannedExpense", expense_id)
            await self._require_access(db, user_id, expense)
            return expense

    async def cancel_expense(self, user_id: int, expense_id: int) -> PlannedExpense:
        """
        Cancel a PLANNED expense. No balance is touched.

        Raises:
            NotFoundError: If the expense does not exist
            ForbiddenError: If the user may not manage it
            InvalidStateError: If it is already bought or cancelled
        """
        async with unit_of_work(self.session_factory) as db:
            expense = await planned_expenses.find_by_id(db, expense_id, lock=True)
            if expense is None:
                raise NotFoundError("PlannedExpense", expense_id)
            await self._require_access(db, user_id, expense)

            before = expense.status.value
            await planned_expenses.transition_to_cancelled(db, expense)
            await audit.log_event(
                db,
                entity_type=AuditEntity.PLANNED_EXPENSE,
                entity_id=expense.id,
                action=AuditAction.MARK_AS_CANCELLED,
                performed_by=user_id,
                changes=audit.diff({"status": before}, {"status": expense.status.value}),
                group_id=expense.group_id
            )

        logger.info("Planned expense cancelled", extra={"expense_id": expense_id, "user_id": user_id})
        return expense

    async def list_overdue(self, user_id: int, as_of: Optional[datetime] = None) -> List[PlannedExpense]:
        """PLANNED expenses past their due date, personal and group."""
        async with self.session_factory() as db:
            return await planned_expenses.find_overdue_for_user(db, user_id, as_of or utcnow())

    @staticmethod
    def page_size(limit: Optional[int]) -> int:
        if not limit:
            return settings.default_page_size
        return max(1, min(limit, settings.max_page_size))

    async def list_personal_expenses(
        self,
        user_id: int,
        status: Optional[PlannedExpenseStatus] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[PlannedExpense], int]:
        """The user's personal expenses, newest first, optionally by status."""
        async with self.session_factory() as db:
            return await planned_expenses.find_by_user(
                db, user_id, status, max(page, 1), self.page_size(limit)
            )

    async def list_group_expenses(
        self,
        user_id: int,
        group_id: int,
        status: Optional[PlannedExpenseStatus] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[PlannedExpense], int]:
        """
        A group's expenses, newest first, optionally by status.

        Raises:
            NotFoundError: If the group does not exist
            ForbiddenError: If the user is not an active member
        """
        async with self.session_factory() as db:
            await membership.require_group(db, group_id)
            await membership.require_active_member(db, user_id, group_id)
            return await planned_expenses.find_by_group(
                db, group_id, status, max(page, 1), self.page_size(limit)
            )

    async def update_expense(self, user_id: int, expense_id: int, **fields) -> PlannedExpense:
        """
        Edit the budget of a PLANNED expense.

        Accepts item, description, estimated_price, category, priority and
        due_date. A field passed as None is left unchanged. Only fields that
        actually change are written to the audit log.

        Raises:
            NotFoundError: If the expense does not exist
            ForbiddenError: If the user may not manage it
            InvalidStateError: If it is already bought or cancelled
            InvalidAmountError: If estimated_price is not a positive integer
        """
        updates = {name: value for name, value in fields.items() if value is not None}
        unknown = set(updates) - planned_expenses.EDITABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot edit planned expense fields: {sorted(unknown)}")
        if "estimated_price" in updates:
            validate_amount(updates["estimated_price"], field="estimated_price")
        if "priority" in updates:
            updates["priority"] = ExpensePriority(updates["priority"])

        async with unit_of_work(self.session_factory) as db:
            expense = await planned_expenses.find_by_id(db, expense_id, lock=True)
            if expense is None:
                raise NotFoundError("PlannedExpense", expense_id)
            await self._require_access(db, user_id, expense)

            before = {name: getattr(expense, name) for name in updates}
            await planned_expenses.update_fields(db, expense, updates)
            changed = {name: value for name, value in updates.items() if before[name] != value}

            if changed:
                await audit.log_event(
                    db,
                    entity_type=AuditEntity.PLANNED_EXPENSE,
                    entity_id=expense.id,
                    action=AuditAction.UPDATE,
                    performed_by=user_id,
                    changes=audit.diff(_jsonable(before), _jsonable(changed)),
                    group_id=expense.group_id
                )

        logger.info(
            "Planned expense updated",
            extra={"expense_id": expense_id, "user_id": user_id, "fields": sorted(changed)}
        )
        return expense


def _jsonable(values: dict) -> dict:
    """Audit changes are stored as JSON: enums by value, datetimes as ISO strings."""
    result = {}
    for name, value in values.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        result[name] = getattr(value, "value", value)
    return result
