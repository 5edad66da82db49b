"""
Planned Expense Schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import List, Optional
from balanca.app.domain.ledger.balance_calculator import validate_amount
from balanca.app.models.ledger_enums import ExpensePriority, PlannedExpenseStatus
from balanca.app.schemas.amount import Amount


class PlannedExpenseCreate(BaseModel):
    """Schema for budgeting a personal or group expense."""
    item: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=255)
    estimated_price: Amount
    category: str = Field(..., min_length=1, max_length=100)
    priority: ExpensePriority = ExpensePriority.MEDIUM
    group_id: Optional[int] = None
    due_date: Optional[datetime] = None


class PlannedExpenseUpdate(BaseModel):
    """Schema for editing a PLANNED expense. Omitted fields are left as they are."""
    item: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=255)
    estimated_price: Optional[int] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    priority: Optional[ExpensePriority] = None
    due_date: Optional[datetime] = None

    @field_validator("estimated_price", mode="before")
    @classmethod
    def check_estimated_price(cls, value):
        if value is None:
            return value
        return validate_amount(value, field="estimated_price")


class PlannedExpenseResponse(BaseModel):
    """Schema for displaying a planned expense."""
    id: int
    item: str
    description: Optional[str]
    category: str
    priority: ExpensePriority
    status: PlannedExpenseStatus
    estimated_price: int
    actual_price: Optional[int]
    user_id: int
    group_id: Optional[int]
    paid_by: Optional[int]
    paid_at: Optional[datetime]
    transaction_id: Optional[int]
    due_date: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PlannedExpenseListResponse(BaseModel):
    """Paginated planned expenses, newest first."""
    items: List[PlannedExpenseResponse]
    total: int
    page: int
    limit: int
