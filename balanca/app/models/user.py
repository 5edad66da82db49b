"""
User database model.

A user is a ledger owner: ``balance`` is the running total of every
USER-owned transaction recorded for them.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger
from sqlalchemy.sql import func
from balanca.app.db.session import Base


class User(Base):
    """
    User model.

    ``balance`` is in the smallest currency unit and is written only by the
    ledger engine, inside the same unit of work as the transaction it reflects.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    phone_number = Column(String(32), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    balance = Column(BigInteger, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, phone='{self.phone_number}', balance={self.balance})>"
