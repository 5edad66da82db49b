"""
Planned Expense API Endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from balanca.app.core.dependencies import get_current_user, get_ledger_engine, get_planned_expense_service
from balanca.app.domain.ledger.ledger_engine import LedgerEngine
from balanca.app.domain.planning.planned_expense_service import PlannedExpenseService
from balanca.app.models.ledger_enums import PlannedExpenseStatus
from balanca.app.schemas.planned_expense import (
    PlannedExpenseCreate,
    PlannedExpenseUpdate,
    PlannedExpenseResponse,
    PlannedExpenseListResponse,
)
from balanca.app.schemas.transaction import ExpensePaymentCreate, ExpenseSettlementResponse

router = APIRouter(prefix="/planned-expenses", tags=["Planned Expenses"])


@router.post("", response_model=PlannedExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_planned_expense(
    payload: PlannedExpenseCreate,
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    """Budget a personal expense, or a group expense when group_id is set."""
    fields = dict(
        item=payload.item,
        estimated_price=payload.estimated_price,
        category=payload.category,
        description=payload.description,
        priority=payload.priority,
        due_date=payload.due_date
    )
    if payload.group_id is not None:
        return await service.create_group_expense(current_user["user_id"], payload.group_id, **fields)
    return await service.create_personal_expense(current_user["user_id"], **fields)


@router.get("", response_model=PlannedExpenseListResponse)
async def list_personal_expenses(
    expense_status: Optional[PlannedExpenseStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    """List the caller's personal expenses, newest first."""
    items, total = await service.list_personal_expenses(
        current_user["user_id"], expense_status, page, limit
    )
    return PlannedExpenseListResponse(
        items=[PlannedExpenseResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=service.page_size(limit)
    )


@router.get("/overdue", response_model=List[PlannedExpenseResponse])
async def list_overdue_expenses(
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    """PLANNED expenses past due, personal and from the caller's groups."""
    return await service.list_overdue(current_user["user_id"])


@router.get("/{expense_id}", response_model=PlannedExpenseResponse)
async def get_planned_expense(
    expense_id: int,
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    return await service.get_expense(current_user["user_id"], expense_id)


@router.patch("/{expense_id}", response_model=PlannedExpenseResponse)
async def update_planned_expense(
    expense_id: int,
    payload: PlannedExpenseUpdate,
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    """Edit a PLANNED expense. Omitted fields are left unchanged."""
    return await service.update_expense(
        current_user["user_id"], expense_id, **payload.model_dump(exclude_unset=True)
    )


@router.post("/{expense_id}/pay", response_model=ExpenseSettlementResponse, status_code=status.HTTP_201_CREATED)
async def pay_personal_expense(
    expense_id: int,
    payload: ExpensePaymentCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Settle one of the caller's personal expenses from their balance."""
    return await engine.pay_personal_expense(
        user_id=current_user["user_id"],
        planned_expense_id=expense_id,
        actual_price=payload.actual_price,
        description=payload.description
    )


@router.post("/{expense_id}/cancel", response_model=PlannedExpenseResponse)
async def cancel_planned_expense(
    expense_id: int,
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    return await service.cancel_expense(current_user["user_id"], expense_id)
