"""
Group and membership database models.

Memberships are administered elsewhere (invite/accept/promote); the
ledger only reads them to authorize group operations.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from balanca.app.db.session import Base
from balanca.app.models.ledger_enums import MembershipRole, MembershipStatus


class Group(Base):
    """
    Group model.

    A shared ledger owner. ``balance`` follows the same rules as User.balance.
    """
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    balance = Column(BigInteger, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Group(id={self.id}, name='{self.name}', balance={self.balance})>"


class GroupMembership(Base):
    """User membership in a group. Only ACTIVE memberships grant ledger access."""
    __tablename__ = "group_memberships"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False, index=True)
    role = Column(Enum(MembershipRole), default=MembershipRole.MEMBER, nullable=False)
    status = Column(Enum(MembershipStatus), default=MembershipStatus.ACTIVE, nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'group_id', name='uq_group_memberships_user_group'),
    )

    def __repr__(self):
        return f"<GroupMembership(user_id={self.user_id}, group_id={self.group_id}, status='{self.status.value}')>"
