"""
Money amounts in request bodies.

Amounts are JSON integers in the smallest currency unit. Anything else
(fractions, floats that happen to be whole, numeric strings, booleans)
is rejected with INVALID_AMOUNT rather than coerced.
"""

from typing import Annotated

from pydantic import BeforeValidator, ValidationInfo

from balanca.app.domain.ledger.balance_calculator import validate_amount


def _check_amount(value, info: ValidationInfo) -> int:
    # InvalidAmountError is not a ValueError, so it escapes pydantic and
    # reaches the AppException handler unchanged.
    return validate_amount(value, field=info.field_name or "amount")


Amount = Annotated[int, BeforeValidator(_check_amount)]
