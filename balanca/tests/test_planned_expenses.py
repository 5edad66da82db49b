"""
Planned expense lifecycle tests: creation, cancellation, access and the
overdue query.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from balanca.app.core.exceptions import (
    ForbiddenError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
)
from balanca.app.models.audit_log import AuditLog
from balanca.app.models.ledger_enums import ExpensePriority, MembershipStatus, OwnerType, PlannedExpenseStatus
from balanca.app.models.timestamps import utcnow
from balanca.app.services import balance_store, planned_expenses


@pytest.mark.asyncio
async def test_create_personal_expense(planner, seed, db_session):
    user_id = await seed.user()

    expense = await planner.create_personal_expense(
        user_id, "Headphones", 12_000, "electronics",
        description="noise cancelling", priority=ExpensePriority.HIGH
    )

    assert expense.id is not None
    assert expense.status == PlannedExpenseStatus.PLANNED
    assert expense.group_id is None
    assert expense.priority == ExpensePriority.HIGH
    assert expense.actual_price is None

    log = (await db_session.execute(select(AuditLog))).scalar_one()
    assert (log.entity_type, log.action) == ("planned_expense", "create")


@pytest.mark.asyncio
async def test_create_group_expense_requires_membership(planner, seed):
    owner_id = await seed.user()
    outsider_id = await seed.user()
    group_id = await seed.group(owner_id)

    with pytest.raises(ForbiddenError):
        await planner.create_group_expense(outsider_id, group_id, "Grill", 5_000, "outdoor")

    with pytest.raises(NotFoundError):
        await planner.create_group_expense(owner_id, 999, "Grill", 5_000, "outdoor")


@pytest.mark.asyncio
async def test_estimate_must_be_positive(planner, seed):
    user_id = await seed.user()

    with pytest.raises(InvalidAmountError):
        await planner.create_personal_expense(user_id, "Nothing", 0, "misc")


@pytest.mark.asyncio
async def test_cancel_expense_leaves_balance_alone(ledger, planner, seed, db_session):
    owner_id = await seed.user()
    group_id = await seed.group(owner_id)
    await ledger.record_external_income(owner_id, group_id, 3_000, "grant")
    expense = await planner.create_group_expense(owner_id, group_id, "Bike", 2_000, "sport")

    cancelled = await planner.cancel_expense(owner_id, expense.id)

    assert cancelled.status == PlannedExpenseStatus.CANCELLED
    assert await balance_store.get_balance(db_session, OwnerType.GROUP, group_id) == 3_000

    with pytest.raises(InvalidStateError):
        await planner.cancel_expense(owner_id, expense.id)

    log = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == "mark_as_cancelled")
    )).scalar_one()
    assert log.changes == {"status": {"before": "planned", "after": "cancelled"}}


@pytest.mark.asyncio
async def test_cancel_someone_elses_expense(planner, seed):
    owner_id = await seed.user()
    other_id = await seed.user()
    expense = await planner.create_personal_expense(owner_id, "Watch", 9_000, "accessories")

    with pytest.raises(ForbiddenError):
        await planner.cancel_expense(other_id, expense.id)

    with pytest.raises(ForbiddenError):
        await planner.get_expense(other_id, expense.id)


@pytest.mark.asyncio
async def test_group_member_can_read_group_expense(planner, seed):
    owner_id = await seed.user()
    member_id = await seed.user()
    group_id = await seed.group(owner_id, members=[member_id])
    expense = await planner.create_group_expense(owner_id, group_id, "Kettle", 2_500, "kitchen")

    fetched = await planner.get_expense(member_id, expense.id)

    assert fetched.id == expense.id


@pytest.mark.asyncio
async def test_overdue_covers_personal_and_active_groups(planner, seed):
    user_id = await seed.user()
    friend_id = await seed.user()
    my_group = await seed.group(user_id)
    left_group = await seed.group(friend_id)
    await seed.membership(user_id, left_group, MembershipStatus.LEFT)

    now = utcnow()
    yesterday = now - timedelta(days=1)
    tomorrow = now + timedelta(days=1)

    personal_due = await planner.create_personal_expense(user_id, "Gym", 3_000, "health", due_date=yesterday)
    await planner.create_personal_expense(user_id, "Course", 3_000, "education", due_date=tomorrow)
    await planner.create_personal_expense(user_id, "Someday", 3_000, "misc")
    group_due = await planner.create_group_expense(
        user_id, my_group, "Cleaner", 4_000, "home", due_date=now - timedelta(days=3)
    )
    cancelled = await planner.create_personal_expense(user_id, "Gone", 1_000, "misc", due_date=yesterday)
    await planner.cancel_expense(user_id, cancelled.id)
    await planner.create_group_expense(friend_id, left_group, "Boat", 9_000, "leisure", due_date=yesterday)
    await planner.create_personal_expense(friend_id, "Friend's", 1_000, "misc", due_date=yesterday)

    overdue = await planner.list_overdue(user_id, as_of=now)

    assert [e.id for e in overdue] == [group_due.id, personal_due.id]


@pytest.mark.asyncio
async def test_store_pagination_and_status_filter(planner, seed, db_session):
    user_id = await seed.user()
    created = [
        await planner.create_personal_expense(user_id, f"Item {i}", 100 + i, "misc")
        for i in range(5)
    ]
    await planner.cancel_expense(user_id, created[0].id)

    page, total = await planned_expenses.find_by_user(db_session, user_id, page=1, limit=2)
    assert total == 5
    assert [e.id for e in page] == [created[4].id, created[3].id]

    planned, planned_total = await planned_expenses.find_by_user(
        db_session, user_id, status=PlannedExpenseStatus.PLANNED
    )
    assert planned_total == 4
    assert created[0].id not in [e.id for e in planned]


@pytest.mark.asyncio
async def test_store_lists_group_expenses(planner, seed, db_session):
    owner_id = await seed.user()
    group_id = await seed.group(owner_id)
    await planner.create_personal_expense(owner_id, "Mine", 100, "misc")
    first = await planner.create_group_expense(owner_id, group_id, "Ours 1", 200, "misc")
    second = await planner.create_group_expense(owner_id, group_id, "Ours 2", 300, "misc")
    await planner.cancel_expense(owner_id, first.id)

    items, total = await planned_expenses.find_by_group(db_session, group_id)
    assert total == 2
    assert [e.id for e in items] == [second.id, first.id]

    cancelled, _ = await planned_expenses.find_by_group(
        db_session, group_id, status=PlannedExpenseStatus.CANCELLED
    )
    assert [e.id for e in cancelled] == [first.id]


@pytest.mark.asyncio
async def test_list_personal_expenses(planner, seed):
    user_id = await seed.user()
    other_id = await seed.user()
    group_id = await seed.group(user_id)
    kept = await planner.create_personal_expense(user_id, "Kettle", 2_000, "kitchen")
    dropped = await planner.create_personal_expense(user_id, "Toaster", 3_000, "kitchen")
    await planner.create_group_expense(user_id, group_id, "Shared", 5_000, "kitchen")
    await planner.create_personal_expense(other_id, "Not mine", 1_000, "misc")
    await planner.cancel_expense(user_id, dropped.id)

    items, total = await planner.list_personal_expenses(user_id)
    assert total == 2
    assert [e.id for e in items] == [dropped.id, kept.id]

    items, total = await planner.list_personal_expenses(user_id, status=PlannedExpenseStatus.PLANNED)
    assert (total, [e.id for e in items]) == (1, [kept.id])

    items, total = await planner.list_personal_expenses(user_id, page=2, limit=1)
    assert total == 2
    assert [e.id for e in items] == [kept.id]


@pytest.mark.asyncio
async def test_list_group_expenses_requires_membership(planner, seed):
    owner_id = await seed.user()
    outsider_id = await seed.user()
    group_id = await seed.group(owner_id)
    expense = await planner.create_group_expense(owner_id, group_id, "Projector", 40_000, "office")

    items, total = await planner.list_group_expenses(owner_id, group_id, status=PlannedExpenseStatus.PLANNED)
    assert (total, [e.id for e in items]) == (1, [expense.id])

    with pytest.raises(ForbiddenError):
        await planner.list_group_expenses(outsider_id, group_id)

    with pytest.raises(NotFoundError):
        await planner.list_group_expenses(owner_id, 9999)


@pytest.mark.asyncio
async def test_update_planned_expense(planner, seed, session_factory, db_session):
    user_id = await seed.user()
    expense = await planner.create_personal_expense(user_id, "Bike", 30_000, "transport")
    due = utcnow() + timedelta(days=10)

    updated = await planner.update_expense(
        user_id, expense.id, item="Bike", estimated_price=28_500,
        priority=ExpensePriority.HIGH, due_date=due
    )

    assert updated.estimated_price == 28_500
    assert updated.priority == ExpensePriority.HIGH
    assert updated.item == "Bike"
    assert updated.status == PlannedExpenseStatus.PLANNED

    async with session_factory() as session:
        stored = await planned_expenses.find_by_id(session, expense.id)
        assert stored.estimated_price == 28_500

    log = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == "update")
    )).scalar_one()
    assert log.entity_id == expense.id
    assert log.changes["estimated_price"] == {"before": 30_000, "after": 28_500}
    assert log.changes["priority"] == {"before": "medium", "after": "high"}
    assert "item" not in log.changes


@pytest.mark.asyncio
async def test_update_rules(planner, seed):
    user_id = await seed.user()
    other_id = await seed.user()
    expense = await planner.create_personal_expense(user_id, "Desk", 10_000, "office")

    with pytest.raises(InvalidAmountError):
        await planner.update_expense(user_id, expense.id, estimated_price=0)

    with pytest.raises(ForbiddenError):
        await planner.update_expense(other_id, expense.id, item="Stolen desk")

    with pytest.raises(NotFoundError):
        await planner.update_expense(user_id, 9999, item="Ghost")

    await planner.cancel_expense(user_id, expense.id)
    with pytest.raises(InvalidStateError):
        await planner.update_expense(user_id, expense.id, item="Too late")
