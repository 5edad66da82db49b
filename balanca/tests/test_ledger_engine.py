"""
Ledger Engine Tests.

Personal and group postings: balance arithmetic, snapshots, audit rows
and precondition failures.
"""

import pytest
from sqlalchemy import select, func

from balanca.app.core.exceptions import (
    ForbiddenError,
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
)
from balanca.app.models.audit_log import AuditLog
from balanca.app.models.ledger_enums import MembershipStatus, OwnerType, TransactionType
from balanca.app.models.transaction import Transaction
from balanca.app.schemas.metadata import GroupMetadata, PersonalMetadata, parse_metadata
from balanca.app.services import balance_store


async def count_transactions(db, owner_type, owner_id) -> int:
    return await db.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.owner_type == owner_type, Transaction.owner_id == owner_id
        )
    )


async def audit_row_for(db, transaction_id) -> AuditLog:
    result = await db.execute(
        select(AuditLog).where(
            AuditLog.entity_type == "transaction", AuditLog.entity_id == transaction_id
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_personal_credit_then_debit(ledger, seed, db_session):
    user_id = await seed.user()

    credit = await ledger.record_personal_transaction(
        user_id, TransactionType.CREDIT, 10_000, "salary", "employer"
    )
    debit = await ledger.record_personal_transaction(
        user_id, TransactionType.DEBIT, 2_500, "food", "card", description="groceries"
    )

    assert credit.balance == 10_000
    assert debit.balance == 7_500
    assert debit.description == "groceries"
    assert parse_metadata(debit.meta_data) == PersonalMetadata()
    assert await balance_store.get_balance(db_session, OwnerType.USER, user_id) == 7_500


@pytest.mark.asyncio
async def test_personal_debit_to_exactly_zero(ledger, seed, db_session):
    user_id = await seed.user(balance=500)

    debit = await ledger.record_personal_transaction(
        user_id, TransactionType.DEBIT, 500, "rent", "bank"
    )

    assert debit.balance == 0
    assert await balance_store.get_balance(db_session, OwnerType.USER, user_id) == 0


@pytest.mark.asyncio
async def test_overdraft_rejected_without_writes(ledger, seed, db_session):
    user_id = await seed.user(balance=100)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger.record_personal_transaction(
            user_id, TransactionType.DEBIT, 101, "rent", "bank"
        )

    assert exc_info.value.details["balance"] == 100
    assert exc_info.value.details["amount"] == 101
    assert await balance_store.get_balance(db_session, OwnerType.USER, user_id) == 100
    # only the opening credit
    assert await count_transactions(db_session, OwnerType.USER, user_id) == 1
    assert await db_session.scalar(select(func.count(AuditLog.id))) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 1.5, True, "100"])
async def test_invalid_amounts(ledger, seed, amount):
    user_id = await seed.user(balance=1_000)

    with pytest.raises(InvalidAmountError):
        await ledger.record_personal_transaction(
            user_id, TransactionType.CREDIT, amount, "misc", "cash"
        )


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        await ledger.record_personal_transaction(
            424242, TransactionType.CREDIT, 100, "misc", "cash"
        )


@pytest.mark.asyncio
async def test_personal_transaction_is_audited(ledger, seed, db_session):
    user_id = await seed.user(balance=300)

    transaction = await ledger.record_personal_transaction(
        user_id, TransactionType.CREDIT, 200, "gift", "friend"
    )

    log = await audit_row_for(db_session, transaction.id)
    assert log.entity_type == "transaction"
    assert log.action == "create"
    assert log.performed_by == user_id
    assert log.changes["balance"] == {"before": 300, "after": 500}


@pytest.mark.asyncio
async def test_group_transaction_by_member(ledger, seed, db_session):
    owner_id = await seed.user()
    member_id = await seed.user()
    group_id = await seed.group(owner_id, balance=1_000, members=[member_id])

    transaction = await ledger.record_group_transaction(
        member_id, group_id, TransactionType.DEBIT, 400, "utilities", "card", paid_by=owner_id
    )

    assert transaction.owner_type == OwnerType.GROUP
    assert transaction.owner_id == group_id
    assert transaction.group_id == group_id
    assert transaction.user_id == member_id
    assert transaction.paid_by == owner_id
    assert transaction.balance == 600
    assert parse_metadata(transaction.meta_data) == GroupMetadata()
    assert await balance_store.get_balance(db_session, OwnerType.GROUP, group_id) == 600

    log = await audit_row_for(db_session, transaction.id)
    assert log.group_id == group_id


@pytest.mark.asyncio
async def test_group_transaction_unknown_group(ledger, seed):
    user_id = await seed.user()

    with pytest.raises(NotFoundError):
        await ledger.record_group_transaction(
            user_id, 999, TransactionType.CREDIT, 100, "misc", "cash"
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [MembershipStatus.PENDING, MembershipStatus.LEFT, None])
async def test_group_transaction_requires_active_membership(ledger, seed, db_session, status):
    owner_id = await seed.user()
    outsider_id = await seed.user()
    group_id = await seed.group(owner_id, balance=1_000)
    if status is not None:
        await seed.membership(outsider_id, group_id, status)

    with pytest.raises(ForbiddenError):
        await ledger.record_group_transaction(
            outsider_id, group_id, TransactionType.DEBIT, 100, "misc", "cash"
        )

    assert await balance_store.get_balance(db_session, OwnerType.GROUP, group_id) == 1_000


@pytest.mark.asyncio
async def test_group_transaction_payer_must_be_member(ledger, seed):
    owner_id = await seed.user()
    outsider_id = await seed.user()
    group_id = await seed.group(owner_id, balance=1_000)

    with pytest.raises(ForbiddenError):
        await ledger.record_group_transaction(
            owner_id, group_id, TransactionType.DEBIT, 100, "misc", "cash", paid_by=outsider_id
        )


@pytest.mark.asyncio
async def test_group_overdraft_rejected(ledger, seed):
    owner_id = await seed.user(balance=10_000)
    group_id = await seed.group(owner_id, balance=50)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger.record_group_transaction(
            owner_id, group_id, TransactionType.DEBIT, 51, "misc", "cash"
        )

    assert exc_info.value.details["owner_type"] == "GROUP"


@pytest.mark.asyncio
async def test_group_transaction_links_planned_expense(ledger, planner, seed):
    owner_id = await seed.user()
    group_id = await seed.group(owner_id, balance=1_000)
    other_group_id = await seed.group(owner_id)
    expense = await planner.create_group_expense(owner_id, group_id, "Router", 300, "electronics")
    foreign = await planner.create_group_expense(owner_id, other_group_id, "Chair", 300, "furniture")

    transaction = await ledger.record_group_transaction(
        owner_id, group_id, TransactionType.DEBIT, 300, "electronics", "card",
        planned_expense_id=expense.id
    )
    assert transaction.planned_expense_id == expense.id

    with pytest.raises(ForbiddenError):
        await ledger.record_group_transaction(
            owner_id, group_id, TransactionType.DEBIT, 100, "furniture", "card",
            planned_expense_id=foreign.id
        )

    with pytest.raises(NotFoundError):
        await ledger.record_group_transaction(
            owner_id, group_id, TransactionType.DEBIT, 100, "misc", "card",
            planned_expense_id=9999
        )


@pytest.mark.asyncio
async def test_external_income(ledger, seed, db_session):
    owner_id = await seed.user()
    group_id = await seed.group(owner_id, balance=100)

    transaction = await ledger.record_external_income(owner_id, group_id, 900, "grant")

    assert transaction.type == TransactionType.CREDIT
    assert transaction.category == "external_income"
    assert transaction.source == "grant"
    assert transaction.description == "External contribution"
    assert transaction.balance == 1_000
    assert parse_metadata(transaction.meta_data).source == "grant"

    log = await audit_row_for(db_session, transaction.id)
    assert log.action == "record_external_income"


@pytest.mark.asyncio
async def test_external_income_requires_membership(ledger, seed):
    owner_id = await seed.user()
    outsider_id = await seed.user()
    group_id = await seed.group(owner_id)

    with pytest.raises(ForbiddenError):
        await ledger.record_external_income(outsider_id, group_id, 900, "grant")


@pytest.mark.asyncio
async def test_fetched_transaction_matches_owner_balance(ledger, seed, session_factory):
    owner_id = await seed.user(balance=2_000)
    group_id = await seed.group(owner_id, balance=700)

    personal = await ledger.record_personal_transaction(
        owner_id, TransactionType.DEBIT, 650, "books", "card"
    )
    fetched = await ledger.get_transaction(owner_id, personal.id)
    async with session_factory() as session:
        assert fetched.balance == await balance_store.get_balance(session, OwnerType.USER, owner_id)
    assert (fetched.id, fetched.amount, fetched.balance) == (personal.id, 650, 1_350)

    group_tx = await ledger.record_group_transaction(
        owner_id, group_id, TransactionType.CREDIT, 300, "refund", "shop"
    )
    fetched = await ledger.get_transaction(owner_id, group_tx.id)
    async with session_factory() as session:
        assert fetched.balance == await balance_store.get_balance(session, OwnerType.GROUP, group_id)
    assert fetched.balance == 1_000
