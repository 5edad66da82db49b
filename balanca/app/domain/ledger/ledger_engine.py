"""
Ledger Engine (Domain Logic).

The only write path into owner balances, the transaction log and the
payment fields of planned expenses.

Every money-moving operation follows the same flow:
1. Validate the amount
2. Validate references and membership (read-only session)
3. Acquire the owner lock(s) in sorted order
4. Open one unit of work and row-lock the owner(s) in the same order
5. Re-check state, write transaction(s), balance(s), expense, audit
6. Commit, or roll back everything on any failure
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from balanca.app.core.config import settings
from balanca.app.core.exceptions import AppException, ConsistencyFailureError, ForbiddenError, NotFoundError
from balanca.app.core.locks import LocalOwnerLocks, OwnerKey, OwnerLockManager, owner_key
from balanca.app.core.reliability import run_with_retry
from balanca.app.db.unit_of_work import unit_of_work
from balanca.app.domain.ledger import balance_calculator
from balanca.app.models.ledger_enums import OwnerType, TransactionType
from balanca.app.models.planned_expense import PlannedExpense
from balanca.app.models.transaction import Transaction
from balanca.app.schemas.metadata import (
    TransactionMetadata,
    PersonalMetadata,
    GroupMetadata,
    TransferOutMetadata,
    MemberContributionMetadata,
    ExpensePaymentMetadata,
    ExternalIncomeMetadata,
    dump_metadata,
)
from balanca.app.services import audit, balance_store, membership, planned_expenses, transaction_log
from balanca.app.services.audit import AuditAction, AuditEntity
from balanca.app.services.transaction_log import ReconciliationReport

logger = logging.getLogger("balanca.ledger")

T = TypeVar("T")

TRANSFER_DEBIT_CATEGORY = "transfer"
TRANSFER_DEBIT_SOURCE = "group_transfer"
TRANSFER_CREDIT_CATEGORY = "member_contribution"
TRANSFER_CREDIT_SOURCE = "member"
EXPENSE_PAYMENT_SOURCE = "expense_payment"
EXTERNAL_INCOME_CATEGORY = "external_income"
EXTERNAL_INCOME_DESCRIPTION = "External contribution"


@dataclass
class TransferResult:
    """Both legs of a member-to-group transfer."""
    debit: Transaction
    credit: Transaction


@dataclass
class ExpenseSettlement:
    """Settling transaction and the expense it moved to BOUGHT."""
    transaction: Transaction
    expense: PlannedExpense


class LedgerEngine:
    """
    Orchestrates balance mutations for users and groups.

    Args:
        session_factory: Session factory for the ledger database
        locks: Owner lock manager; in-process locks by default
        max_retries: Attempts per unit of work on transient conflicts
        backoff_ms: Linear backoff step between attempts
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        locks: Optional[OwnerLockManager] = None,
        max_retries: Optional[int] = None,
        backoff_ms: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.locks = LocalOwnerLocks() if locks is None else locks
        self.max_retries = settings.ledger_max_retries if max_retries is None else max_retries
        self.backoff_ms = settings.ledger_retry_backoff_ms if backoff_ms is None else backoff_ms

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        keys: Iterable[OwnerKey],
        work: Callable[[AsyncSession, List[OwnerKey]], Awaitable[T]]
    ) -> T:
        """
        Run ``work`` in one unit of work while holding the owner locks.

        Domain errors propagate unchanged. Anything else has already been
        rolled back and is reported as ConsistencyFailureError.
        """
        async with self.locks.hold(keys) as ordered:
            async def attempt() -> T:
                async with unit_of_work(self.session_factory) as db:
                    return await work(db, ordered)

            try:
                return await run_with_retry(
                    attempt,
                    operation,
                    max_attempts=self.max_retries,
                    backoff_ms=self.backoff_ms
                )
            except AppException:
                raise
            except Exception as exc:
                logger.exception(
                    "Ledger operation rolled back",
                    extra={"operation": operation, "owners": [f"{t}:{i}" for t, i in ordered]}
                )
                raise ConsistencyFailureError(operation) from exc

    async def _read(self, check: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run read-only precondition checks in a short-lived session."""
        async with self.session_factory() as db:
            return await check(db)

    @staticmethod
    async def _lock_balances(db: AsyncSession, ordered: List[OwnerKey]) -> Dict[OwnerKey, int]:
        balances = {}
        for owner_type, owner_id in ordered:
            balances[(owner_type, owner_id)] = await balance_store.lock_owner(
                db, OwnerType(owner_type), owner_id
            )
        return balances

    @staticmethod
    async def _post(
        db: AsyncSession,
        owner_type: OwnerType,
        owner_id: int,
        balance: int,
        direction: TransactionType,
        amount: int,
        meta: TransactionMetadata,
        user_id: int,
        category: str,
        source: str,
        description: Optional[str] = None,
        group_id: Optional[int] = None,
        paid_by: Optional[int] = None,
        planned_expense_id: Optional[int] = None
    ) -> Transaction:
        """Append one ledger row and move the owner's balance to match it."""
        new_balance = balance_calculator.apply(balance, direction, amount, owner_type, owner_id)

        transaction = Transaction(
            owner_type=owner_type,
            owner_id=owner_id,
            type=direction,
            amount=amount,
            balance=new_balance,
            category=category,
            source=source,
            description=description,
            meta_data=dump_metadata(meta),
            user_id=user_id,
            group_id=group_id,
            paid_by=paid_by,
            planned_expense_id=planned_expense_id,
            deleted_at=None
        )
        await transaction_log.append(db, transaction)
        await balance_store.set_balance(db, owner_type, owner_id, new_balance)
        return transaction

    @staticmethod
    def _posting_changes(balance_before: int, transaction: Transaction) -> dict:
        return audit.diff(
            {"balance": balance_before},
            {
                "type": transaction.type.value,
                "amount": transaction.amount,
                "balance": transaction.balance,
            }
        )

    @staticmethod
    async def _check_group_access(db: AsyncSession, user_id: int, group_id: int) -> None:
        await membership.require_group(db, group_id)
        await membership.require_active_member(db, user_id, group_id)

    # ------------------------------------------------------------------
    # Personal and group postings
    # ------------------------------------------------------------------

    async def record_personal_transaction(
        self,
        user_id: int,
        direction: TransactionType,
        amount: int,
        category: str,
        source: str,
        description: Optional[str] = None
    ) -> Transaction:
        """
        Credit or debit a user's own balance.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the user does not exist
            InsufficientBalanceError: If a debit exceeds the balance
        """
        balance_calculator.validate_amount(amount)
        direction = TransactionType(direction)
        key = owner_key(OwnerType.USER, user_id)

        async def work(db: AsyncSession, ordered: List[OwnerKey]) -> Transaction:
            balances = await self._lock_balances(db, ordered)
            transaction = await self._post(
                db, OwnerType.USER, user_id, balances[key], direction, amount,
                PersonalMetadata(),
                user_id=user_id,
                category=category,
                source=source,
                description=description
            )
            await audit.log_event(
                db,
                entity_type=AuditEntity.TRANSACTION,
                entity_id=transaction.id,
                action=AuditAction.CREATE,
                performed_by=user_id,
                changes=self._posting_changes(balances[key], transaction)
            )
            return transaction

        transaction = await self._execute("record_personal_transaction", [key], work)
        logger.info(
            "Personal transaction recorded",
            extra={
                "operation": "record_personal_transaction",
                "transaction_id": transaction.id,
                "user_id": user_id,
                "type": direction.value,
                "amount": amount,
                "balance": transaction.balance,
            }
        )
        return transaction

    async def record_group_transaction(
        self,
        acting_user_id: int,
        group_id: int,
        direction: TransactionType,
        amount: int,
        category: str,
        source: str,
        description: Optional[str] = None,
        paid_by: Optional[int] = None,
        planned_expense_id: Optional[int] = None
    ) -> Transaction:
        """
        Credit or debit a group's balance on behalf of an active member.

        ``planned_expense_id`` only links the row to an expense of the same
        group; settling an expense goes through ``pay_group_expense``.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the group or the linked expense does not exist
            ForbiddenError: If the actor or payer is not an active member,
                or the expense belongs to another owner
            InsufficientBalanceError: If a debit exceeds the group balance
        """
        balance_calculator.validate_amount(amount)
        direction = TransactionType(direction)

        async def check(db: AsyncSession) -> None:
            await self._check_group_access(db, acting_user_id, group_id)
            if paid_by is not None:
                await membership.require_active_member(db, paid_by, group_id)
            if planned_expense_id is not None:
                expense = await planned_expenses.find_by_id(db, planned_expense_id)
                if expense is None:
                    raise NotFoundError("PlannedExpense", planned_expense_id)
                if expense.group_id != group_id:
                    raise ForbiddenError(
                        "Planned expense does not belong to this group",
                        details={"expense_id": planned_expense_id, "group_id": group_id}
                    )

        await self._read(check)
        key = owner_key(OwnerType.GROUP, group_id)

        async def work(db: AsyncSession, ordered: List[OwnerKey]) -> Transaction:
            balances = await self._lock_balances(db, ordered)
            transaction = await self._post(
                db, OwnerType.GROUP, group_id, balances[key], direction, amount,
                GroupMetadata(),
                user_id=acting_user_id,
                category=category,
                source=source,
                description=description,
                group_id=group_id,
                paid_by=paid_by,
                planned_expense_id=planned_expense_id
            )
            await audit.log_event(
                db,
                entity_type=AuditEntity.TRANSACTION,
                entity_id=transaction.id,
                action=AuditAction.CREATE,
                performed_by=acting_user_id,
                changes=self._posting_changes(balances[key], transaction),
                group_id=group_id
            )
            return transaction

        transaction = await self._execute("record_group_transaction", [key], work)
        logger.info(
            "Group transaction recorded",
            extra={
                "operation": "record_group_transaction",
                "transaction_id": transaction.id,
                "group_id": group_id,
                "user_id": acting_user_id,
                "type": direction.value,
                "amount": amount,
                "balance": transaction.balance,
            }
        )
        return transaction

    # ------------------------------------------------------------------
    # Group funding
    # ------------------------------------------------------------------

    async def transfer_to_group(
        self,
        user_id: int,
        group_id: int,
        amount: int,
        description: Optional[str] = None
    ) -> TransferResult:
        """
        Move money from a member's balance into the group's balance.

        Both legs and both audit rows commit together or not at all.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the group or user does not exist
            ForbiddenError: If the user is not an active member
            InsufficientBalanceError: If the user balance is short
        """
        balance_calculator.validate_amount(amount)
        await self._read(lambda db: self._check_group_access(db, user_id, group_id))

        user_key = owner_key(OwnerType.USER, user_id)
        group_key = owner_key(OwnerType.GROUP, group_id)

        async def work(db: AsyncSession, ordered: List[OwnerKey]) -> TransferResult:
            balances = await self._lock_balances(db, ordered)

            debit = await self._post(
                db, OwnerType.USER, user_id, balances[user_key], TransactionType.DEBIT, amount,
                TransferOutMetadata(group_id=group_id),
                user_id=user_id,
                category=TRANSFER_DEBIT_CATEGORY,
                source=TRANSFER_DEBIT_SOURCE,
                description=description,
                group_id=group_id
            )
            credit = await self._post(
                db, OwnerType.GROUP, group_id, balances[group_key], TransactionType.CREDIT, amount,
                MemberContributionMetadata(member_id=user_id),
                user_id=user_id,
                category=TRANSFER_CREDIT_CATEGORY,
                source=TRANSFER_CREDIT_SOURCE,
                description=description,
                group_id=group_id,
                paid_by=user_id
            )

            await audit.log_event(
                db,
                entity_type=AuditEntity.TRANSACTION,
                entity_id=debit.id,
                action=AuditAction.TRANSFER_TO_GROUP,
                performed_by=user_id,
                changes=self._posting_changes(balances[user_key], debit),
                group_id=group_id
            )
            await audit.log_event(
                db,
                entity_type=AuditEntity.TRANSACTION,
                entity_id=credit.id,
                action=AuditAction.RECEIVE_FROM_MEMBER,
                performed_by=user_id,
                changes=self._posting_changes(balances[group_key], credit),
                group_id=group_id
            )
            return TransferResult(debit=debit, credit=credit)

        result = await self._execute("transfer_to_group", [user_key, group_key], work)
        logger.info(
            "Transfer to group recorded",
            extra={
                "operation": "transfer_to_group",
                "user_id": user_id,
                "group_id": group_id,
                "amount": amount,
                "user_balance": result.debit.balance,
                "group_balance": result.credit.balance,
            }
        )
        return result

    async def record_external_income(
        self,
        acting_user_id: int,
        group_id: int,
        amount: int,
        source: str
    ) -> Transaction:
        """
        Credit a group with money from outside its membership.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the group does not exist
            ForbiddenError: If the actor is not an active member
        """
        balance_calculator.validate_amount(amount)
        await self._read(lambda db: self._check_group_access(db, acting_user_id, group_id))
        key = owner_key(OwnerType.GROUP, group_id)

        async def work(db: AsyncSession, ordered: List[OwnerKey]) -> Transaction:
            balances = await self._lock_balances(db, ordered)
            transaction = await self._post(
                db, OwnerType.GROUP, group_id, balances[key], TransactionType.CREDIT, amount,
                ExternalIncomeMetadata(source=source),
                user_id=acting_user_id,
                category=EXTERNAL_INCOME_CATEGORY,
                source=source,
                description=EXTERNAL_INCOME_DESCRIPTION,
                group_id=group_id
            )
            await audit.log_event(
                db,
                entity_type=AuditEntity.TRANSACTION,
                entity_id=transaction.id,
                action=AuditAction.RECORD_EXTERNAL_INCOME,
                performed_by=acting_user_id,
                changes=self._posting_changes(balances[key], transaction),
                group_id=group_id
            )
            return transaction

        transaction = await self._execute("record_external_income", [key], work)
        logger.info(
            "External income recorded",
            extra={
                "operation": "record_external_income",
                "transaction_id": transaction.id,
                "group_id": group_id,
                "source": source,
                "amount": amount,
                "balance": transaction.balance,
            }
        )
        return transaction

    # ------------------------------------------------------------------
    # Expense settlement
    # ------------------------------------------------------------------

    async def _settle(
        self,
        operation: str,
        owner_type: OwnerType,
        owner_id: int,
        user_id: int,
        expense_id: int,
        actual_price: int,
        description: Optional[str],
        group_id: Optional[int]
    ) -> ExpenseSettlement:
        key = owner_key(owner_type, owner_id)

        async def work(db: AsyncSession, ordered: List[OwnerKey]) -> ExpenseSettlement:
            balances = await self._lock_balances(db, ordered)

            expense = await planned_expenses.find_by_id(db, expense_id, lock=True)
            if expense is None:
                raise NotFoundError("PlannedExpense", expense_id)
            planned_expenses.require_planned(expense)

            before = {
                "status": expense.status.value,
                "actual_price": expense.actual_price,
                "paid_by": expense.paid_by,
            }

            transaction = await self._post(
                db, owner_type, owner_id, balances[key], TransactionType.DEBIT, actual_price,
                ExpensePaymentMetadata(expense_id=expense_id),
                user_id=user_id,
                category=expense.category,
                source=EXPENSE_PAYMENT_SOURCE,
                description=description,
                group_id=group_id,
                paid_by=user_id,
                planned_expense_id=expense_id
            )
            await planned_expenses.transition_to_bought(
                db,
                expense,
                actual_price=actual_price,
                payer_id=user_id,
                paid_at=transaction.created_at,
                transaction_id=transaction.id
            )
            await audit.log_event(
                db,
                entity_type=AuditEntity.PLANNED_EXPENSE,
                entity_id=expense.id,
                action=AuditAction.MARK_AS_PAID,
                performed_by=user_id,
                changes=audit.diff(before, {
                    "status": expense.status.value,
                    "actual_price": expense.actual_price,
                    "paid_by": expense.paid_by,
                }),
                group_id=group_id
            )
            return ExpenseSettlement(transaction=transaction, expense=expense)

        settlement = await self._execute(operation, [key], work)
        logger.info(
            "Planned expense settled",
            extra={
                "operation": operation,
                "expense_id": expense_id,
                "transaction_id": settlement.transaction.id,
                "owner": f"{owner_type.value}:{owner_id}",
                "amount": actual_price,
                "balance": settlement.transaction.balance,
            }
        )
        return settlement

    async def pay_group_expense(
        self,
        user_id: int,
        group_id: int,
        planned_expense_id: int,
        actual_price: int,
        description: Optional[str] = None
    ) -> ExpenseSettlement:
        """
        Pay a group's planned expense from the group balance.

        Raises:
            InvalidAmountError: If actual_price is not a positive integer
            NotFoundError: If the group or expense does not exist
            ForbiddenError: If the user is not an active member or the
                expense belongs to another group
            InvalidStateError: If the expense is no longer PLANNED
            InsufficientBalanceError: If the group balance is short
        """
        balance_calculator.validate_amount(actual_price, field="actual_price")

        async def check(db: AsyncSession) -> None:
            await self._check_group_access(db, user_id, group_id)
            expense = await planned_expenses.find_by_id(db, planned_expense_id)
            if expense is None:
                raise NotFoundError("PlannedExpense", planned_expense_id)
            if expense.group_id != group_id:
                raise ForbiddenError(
                    "Planned expense does not belong to this group",
                    details={"expense_id": planned_expense_id, "group_id": group_id}
                )

        await self._read(check)
        return await self._settle(
            "pay_group_expense", OwnerType.GROUP, group_id, user_id,
            planned_expense_id, actual_price, description, group_id
        )

    async def pay_personal_expense(
        self,
        user_id: int,
        planned_expense_id: int,
        actual_price: int,
        description: Optional[str] = None
    ) -> ExpenseSettlement:
        """
        Pay one of the user's own planned expenses from their balance.

        Raises:
            InvalidAmountError: If actual_price is not a positive integer
            NotFoundError: If the expense does not exist
            ForbiddenError: If the expense is a group expense or not the user's
            InvalidStateError: If the expense is no longer PLANNED
            InsufficientBalanceError: If the user balance is short
        """
        balance_calculator.validate_amount(actual_price, field="actual_price")

        async def check(db: AsyncSession) -> None:
            expense = await planned_expenses.find_by_id(db, planned_expense_id)
            if expense is None:
                raise NotFoundError("PlannedExpense", planned_expense_id)
            if expense.group_id is not None or expense.user_id != user_id:
                raise ForbiddenError(
                    "Planned expense is not a personal expense of this user",
                    details={"expense_id": planned_expense_id, "user_id": user_id}
                )

        await self._read(check)
        return await self._settle(
            "pay_personal_expense", OwnerType.USER, user_id, user_id,
            planned_expense_id, actual_price, description, None
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def page_size(self, limit: Optional[int]) -> int:
        if not limit:
            return settings.default_page_size
        return max(1, min(limit, settings.max_page_size))

    async def get_transaction(self, user_id: int, transaction_id: int) -> Transaction:
        """
        Raises:
            NotFoundError: If the transaction does not exist or is hidden
            ForbiddenError: If the user may not see it
        """
        async with self.session_factory() as db:
            transaction = await transaction_log.find_by_id(db, transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction", transaction_id)

            if transaction.owner_type == OwnerType.USER:
                if transaction.owner_id != user_id:
                    raise ForbiddenError(
                        "Transaction belongs to another user",
                        details={"transaction_id": transaction_id}
                    )
            else:
                await membership.require_active_member(db, user_id, transaction.owner_id)

            return transaction

    async def list_personal_transactions(
        self,
        user_id: int,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[Transaction], int]:
        """A user's own transactions, newest first."""
        async with self.session_factory() as db:
            return await transaction_log.find_by_owner(
                db, OwnerType.USER, user_id, max(page, 1), self.page_size(limit)
            )

    async def list_group_transactions(
        self,
        user_id: int,
        group_id: int,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[Transaction], int]:
        """
        A group's transactions, newest first. Active members only.

        Raises:
            NotFoundError: If the group does not exist
            ForbiddenError: If the user is not an active member
        """
        async with self.session_factory() as db:
            await self._check_group_access(db, user_id, group_id)
            return await transaction_log.find_by_owner(
                db, OwnerType.GROUP, group_id, max(page, 1), self.page_size(limit)
            )

    async def reconcile_owner(self, owner_type: OwnerType, owner_id: int) -> ReconciliationReport:
        """
        Compare an owner's stored balance against its transaction history.

        Raises:
            NotFoundError: If the owner does not exist
        """
        async with self.session_factory() as db:
            report = await transaction_log.reconcile(db, OwnerType(owner_type), owner_id)

        if not report.is_consistent:
            logger.error(
                "Balance diverges from ledger",
                extra={
                    "owner": f"{report.owner_type.value}:{owner_id}",
                    "stored_balance": report.stored_balance,
                    "ledger_sum": report.ledger_sum,
                    "latest_snapshot": report.latest_snapshot,
                }
            )
        return report
