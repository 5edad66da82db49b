"""
Owner balance store.

Reads and writes the running balance on User and Group rows. Only the
ledger engine writes through here, always inside a unit of work and
while holding the owner lock.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from balanca.app.models.user import User
from balanca.app.models.group import Group
from balanca.app.models.ledger_enums import OwnerType
from balanca.app.core.exceptions import NotFoundError


OWNER_MODELS = {
    OwnerType.USER: User,
    OwnerType.GROUP: Group,
}


def _model_for(owner_type: OwnerType):
    return OWNER_MODELS[OwnerType(owner_type)]


async def get_balance(db: AsyncSession, owner_type: OwnerType, owner_id: int) -> int:
    """
    Read an owner's current balance without locking.

    Raises:
        NotFoundError: If the owner does not exist
    """
    model = _model_for(owner_type)
    result = await db.execute(select(model.balance).where(model.id == owner_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFoundError(model.__name__, owner_id)
    return balance


async def lock_owner(db: AsyncSession, owner_type: OwnerType, owner_id: int) -> int:
    """
    Row-lock an owner with SELECT ... FOR UPDATE and return its balance.

    The lock lasts until the surrounding transaction ends.

    Raises:
        NotFoundError: If the owner does not exist
    """
    model = _model_for(owner_type)
    result = await db.execute(
        select(model.balance).where(model.id == owner_id).with_for_update()
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFoundError(model.__name__, owner_id)
    return balance


async def set_balance(db: AsyncSession, owner_type: OwnerType, owner_id: int, amount: int) -> None:
    """Overwrite an owner's balance. Callers validate the new value."""
    model = _model_for(owner_type)
    await db.execute(
        update(model)
        .where(model.id == owner_id)
        .values(balance=amount)
        .execution_options(synchronize_session=False)
    )
