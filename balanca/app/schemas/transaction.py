"""
Ledger Schemas.

Amounts are plain integers in the smallest currency unit, checked by
``Amount`` before a request reaches the engine. Both paths report
INVALID_AMOUNT.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from balanca.app.models.ledger_enums import OwnerType, TransactionType
from balanca.app.schemas.amount import Amount
from balanca.app.schemas.metadata import TransactionMetadata
from balanca.app.schemas.planned_expense import PlannedExpenseResponse


class TransactionCreate(BaseModel):
    """Schema for recording a personal transaction."""
    type: TransactionType
    amount: Amount
    category: str = Field(..., min_length=1, max_length=100)
    source: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)


class GroupTransactionCreate(TransactionCreate):
    """Schema for recording a group transaction."""
    paid_by: Optional[int] = None
    planned_expense_id: Optional[int] = None


class TransferCreate(BaseModel):
    """Schema for moving money from the caller to a group."""
    amount: Amount
    description: Optional[str] = Field(None, max_length=255)


class ExpensePaymentCreate(BaseModel):
    """Schema for settling a planned expense."""
    actual_price: Amount
    description: Optional[str] = Field(None, max_length=255)


class ExternalIncomeCreate(BaseModel):
    """Schema for recording income from a non-member source."""
    amount: Amount
    source: str = Field(..., min_length=1, max_length=100)


class TransactionResponse(BaseModel):
    """Schema for displaying a transaction."""
    id: int
    owner_type: OwnerType
    owner_id: int
    type: TransactionType
    amount: int
    balance: int
    category: str
    source: str
    description: Optional[str]
    user_id: int
    group_id: Optional[int]
    paid_by: Optional[int]
    planned_expense_id: Optional[int]
    metadata: Optional[TransactionMetadata] = Field(None, validation_alias="meta_data")
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    """Paginated transactions, newest first."""
    items: List[TransactionResponse]
    total: int
    page: int
    limit: int


class TransferResponse(BaseModel):
    """Both legs of a member-to-group transfer."""
    debit: TransactionResponse
    credit: TransactionResponse

    class Config:
        from_attributes = True


class ExpenseSettlementResponse(BaseModel):
    """Settling transaction plus the expense it moved to BOUGHT."""
    transaction: TransactionResponse
    expense: PlannedExpenseResponse

    class Config:
        from_attributes = True
