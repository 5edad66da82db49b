"""
Transaction database model.

Immutable ledger records. One row per balance mutation.
"""

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Enum, ForeignKey, JSON, Index
from balanca.app.db.session import Base
from balanca.app.models.ledger_enums import OwnerType, TransactionType
from balanca.app.models.timestamps import utcnow


class Transaction(Base):
    """
    Transaction model.

    ``balance`` is the owner's balance immediately after this row was applied,
    a point-in-time snapshot that is never recomputed.
    NO updates allowed. ``deleted_at`` hides a row from listings only; hidden
    rows still count toward the owner's balance.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owner
    owner_type = Column(Enum(OwnerType), nullable=False)
    owner_id = Column(Integer, nullable=False)

    # Entry details
    type = Column(Enum(TransactionType), nullable=False)  # CREDIT or DEBIT
    amount = Column(BigInteger, nullable=False)
    balance = Column(BigInteger, nullable=False)
    category = Column(String(100), nullable=False, default="")
    source = Column(String(100), nullable=False, default="")
    description = Column(String(255), nullable=True)
    meta_data = Column(JSON, nullable=True)

    # Links
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)  # Acting user
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=True, index=True)
    paid_by = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    planned_expense_id = Column(Integer, ForeignKey('planned_expenses.id'), nullable=True, index=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_transactions_owner_created', 'owner_type', 'owner_id', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, owner={self.owner_type.value}:{self.owner_id}, "
            f"type='{self.type.value}', amount={self.amount}, balance={self.balance})>"
        )
