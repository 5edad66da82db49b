"""
Ledger enumerations.
"""

import enum


class OwnerType(str, enum.Enum):
    """Who a balance (and a transaction) belongs to."""
    USER = "USER"
    GROUP = "GROUP"


class TransactionType(str, enum.Enum):
    """Transaction direction."""
    CREDIT = "CREDIT"  # Money entering the owner's balance
    DEBIT = "DEBIT"  # Money leaving the owner's balance


class PlannedExpenseStatus(str, enum.Enum):
    """Planned expense lifecycle: PLANNED -> BOUGHT | CANCELLED (both terminal)."""
    PLANNED = "planned"
    BOUGHT = "bought"
    CANCELLED = "cancelled"


class ExpensePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MembershipRole(str, enum.Enum):
    MEMBER = "member"
    MANAGER = "manager"


class MembershipStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    LEFT = "left"
