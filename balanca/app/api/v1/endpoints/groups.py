"""
Group Ledger API Endpoints.

Money movement on group balances. Every route requires an active
membership in the group.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from balanca.app.core.dependencies import get_current_user, get_ledger_engine, get_planned_expense_service
from balanca.app.domain.ledger.ledger_engine import LedgerEngine
from balanca.app.domain.planning.planned_expense_service import PlannedExpenseService
from balanca.app.models.ledger_enums import PlannedExpenseStatus
from balanca.app.schemas.planned_expense import PlannedExpenseListResponse, PlannedExpenseResponse
from balanca.app.schemas.transaction import (
    GroupTransactionCreate,
    TransferCreate,
    ExpensePaymentCreate,
    ExternalIncomeCreate,
    TransactionResponse,
    TransactionListResponse,
    TransferResponse,
    ExpenseSettlementResponse,
)

router = APIRouter(prefix="/groups", tags=["Group Ledger"])


@router.post("/{group_id}/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_group_transaction(
    group_id: int,
    payload: GroupTransactionCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Record a credit or debit against the group balance."""
    return await engine.record_group_transaction(
        acting_user_id=current_user["user_id"],
        group_id=group_id,
        direction=payload.type,
        amount=payload.amount,
        category=payload.category,
        source=payload.source,
        description=payload.description,
        paid_by=payload.paid_by,
        planned_expense_id=payload.planned_expense_id
    )


@router.get("/{group_id}/transactions", response_model=TransactionListResponse)
async def list_group_transactions(
    group_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """List the group's transactions, newest first."""
    items, total = await engine.list_group_transactions(current_user["user_id"], group_id, page, limit)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=engine.page_size(limit)
    )


@router.post("/{group_id}/transfer", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def transfer_to_group(
    group_id: int,
    payload: TransferCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Move money from the caller's balance into the group."""
    return await engine.transfer_to_group(
        user_id=current_user["user_id"],
        group_id=group_id,
        amount=payload.amount,
        description=payload.description
    )


@router.get("/{group_id}/expenses", response_model=PlannedExpenseListResponse)
async def list_group_expenses(
    group_id: int,
    expense_status: Optional[PlannedExpenseStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    service: PlannedExpenseService = Depends(get_planned_expense_service)
):
    """List the group's planned expenses, newest first."""
    items, total = await service.list_group_expenses(
        current_user["user_id"], group_id, expense_status, page, limit
    )
    return PlannedExpenseListResponse(
        items=[PlannedExpenseResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=service.page_size(limit)
    )


@router.post(
    "/{group_id}/expenses/{expense_id}/pay",
    response_model=ExpenseSettlementResponse,
    status_code=status.HTTP_201_CREATED
)
async def pay_group_expense(
    group_id: int,
    expense_id: int,
    payload: ExpensePaymentCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Settle a planned group expense from the group balance."""
    return await engine.pay_group_expense(
        user_id=current_user["user_id"],
        group_id=group_id,
        planned_expense_id=expense_id,
        actual_price=payload.actual_price,
        description=payload.description
    )


@router.post("/{group_id}/external-income", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def record_external_income(
    group_id: int,
    payload: ExternalIncomeCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Credit the group with money from a non-member source."""
    return await engine.record_external_income(
        acting_user_id=current_user["user_id"],
        group_id=group_id,
        amount=payload.amount,
        source=payload.source
    )
