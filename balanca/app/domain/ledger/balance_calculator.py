"""
Balance Calculator.

Pure arithmetic for ledger postings. Integer amounts only.
"""

from balanca.app.models.ledger_enums import OwnerType, TransactionType
from balanca.app.core.exceptions import InvalidAmountError, InsufficientBalanceError


def validate_amount(amount, field: str = "amount") -> int:
    """
    Ensure an amount is a positive integer in the smallest currency unit.

    Raises:
        InvalidAmountError: For zero, negative, fractional or boolean values
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount, field=field)
    return amount


def apply(
    balance: int,
    direction: TransactionType,
    amount: int,
    owner_type: OwnerType,
    owner_id: int
) -> int:
    """
    Compute the balance after posting ``amount`` in ``direction``.

    Raises:
        InsufficientBalanceError: If a debit exceeds the current balance
    """
    if TransactionType(direction) == TransactionType.CREDIT:
        return balance + amount

    if balance < amount:
        raise InsufficientBalanceError(OwnerType(owner_type).value, owner_id, balance, amount)
    return balance - amount
