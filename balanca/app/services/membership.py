"""
Read-only membership lookup used to authorize group operations.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from balanca.app.models.group import Group, GroupMembership
from balanca.app.models.ledger_enums import MembershipStatus
from balanca.app.core.exceptions import ForbiddenError, NotFoundError


async def get_active_membership(
    db: AsyncSession,
    user_id: int,
    group_id: int
) -> Optional[GroupMembership]:
    result = await db.execute(
        select(GroupMembership).where(
            GroupMembership.user_id == user_id,
            GroupMembership.group_id == group_id,
            GroupMembership.status == MembershipStatus.ACTIVE
        )
    )
    return result.scalar_one_or_none()


async def require_group(db: AsyncSession, group_id: int) -> Group:
    """
    Raises:
        NotFoundError: If the group does not exist
    """
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFoundError("Group", group_id)
    return group


async def require_active_member(db: AsyncSession, user_id: int, group_id: int) -> GroupMembership:
    """
    Ensure a user holds an active membership in a group.

    Raises:
        ForbiddenError: If the user is not an active member
    """
    membership = await get_active_membership(db, user_id, group_id)
    if membership is None:
        raise ForbiddenError(
            "User is not an active member of this group",
            details={"user_id": user_id, "group_id": group_id}
        )
    return membership
