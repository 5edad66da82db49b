"""
Audit trail query tests.
"""

import pytest

from balanca.app.models.ledger_enums import TransactionType
from balanca.app.services import audit
from balanca.app.services.audit import AuditAction, AuditEntity


@pytest.mark.asyncio
async def test_expense_trail_in_order(ledger, planner, seed, db_session):
    user_id = await seed.user()
    await ledger.record_personal_transaction(user_id, TransactionType.CREDIT, 1_000, "salary", "employer")
    expense = await planner.create_personal_expense(user_id, "Kettle", 800, "kitchen")
    await ledger.pay_personal_expense(user_id, expense.id, 750)

    trail = await audit.find_by_entity(db_session, AuditEntity.PLANNED_EXPENSE, expense.id)

    assert [log.action for log in trail] == [AuditAction.CREATE, AuditAction.MARK_AS_PAID]
    assert trail[1].changes["paid_by"] == {"before": None, "after": user_id}


@pytest.mark.asyncio
async def test_audit_trail_filters(ledger, seed, db_session):
    user_id = await seed.user()
    other_id = await seed.user()
    group_id = await seed.group(user_id, members=[other_id])
    await ledger.record_personal_transaction(user_id, TransactionType.CREDIT, 1_000, "salary", "employer")
    await ledger.transfer_to_group(user_id, group_id, 400)
    await ledger.record_external_income(other_id, group_id, 100, "raffle")

    group_trail = await audit.get_audit_trail(db_session, group_id=group_id)
    assert [log.action for log in group_trail] == [
        AuditAction.RECORD_EXTERNAL_INCOME,
        AuditAction.RECEIVE_FROM_MEMBER,
        AuditAction.TRANSFER_TO_GROUP,
    ]

    by_other = await audit.get_audit_trail(db_session, performed_by=other_id)
    assert len(by_other) == 1

    transfers = await audit.get_audit_trail(db_session, action=AuditAction.TRANSFER_TO_GROUP, limit=5)
    assert len(transfers) == 1
    assert transfers[0].performed_by == user_id


@pytest.mark.asyncio
async def test_diff_pairs_fields():
    assert audit.diff({"status": "planned"}, {"status": "bought", "paid_by": 3}) == {
        "status": {"before": "planned", "after": "bought"},
        "paid_by": {"before": None, "after": 3},
    }
