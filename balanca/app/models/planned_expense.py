"""
Planned Expense database model.

A budgeted intent to spend, owned by a user or by a group.
"""

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Enum, ForeignKey, Index
from balanca.app.db.session import Base
from balanca.app.models.ledger_enums import PlannedExpenseStatus, ExpensePriority
from balanca.app.models.timestamps import utcnow


class PlannedExpense(Base):
    """
    Planned Expense model.

    Strict workflow: PLANNED -> BOUGHT | CANCELLED.
    actual_price, paid_by, paid_at and transaction_id are only ever set
    together with the settling ledger transaction.
    """
    __tablename__ = "planned_expenses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    item = Column(String(200), nullable=False)
    description = Column(String(255), nullable=True)
    category = Column(String(100), nullable=False, default="")
    priority = Column(Enum(ExpensePriority), default=ExpensePriority.MEDIUM, nullable=False)

    # Financials
    estimated_price = Column(BigInteger, nullable=False)
    actual_price = Column(BigInteger, nullable=True)

    # Status
    status = Column(Enum(PlannedExpenseStatus), default=PlannedExpenseStatus.PLANNED, nullable=False, index=True)

    # Ownership (group_id is NULL for personal expenses)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=True, index=True)

    # Payment Flow
    paid_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    transaction_id = Column(Integer, nullable=True)

    due_date = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_planned_expenses_status_due', 'status', 'due_date'),
    )

    def __repr__(self):
        return f"<PlannedExpense(id={self.id}, item='{self.item}', status='{self.status.value}')>"
