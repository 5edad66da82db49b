"""
Personal Transaction API Endpoints.

Credits, debits and history of the caller's own balance.
"""

from fastapi import APIRouter, Depends, Query, status

from balanca.app.core.dependencies import get_current_user, get_ledger_engine
from balanca.app.domain.ledger.ledger_engine import LedgerEngine
from balanca.app.schemas.transaction import (
    TransactionCreate,
    TransactionResponse,
    TransactionListResponse,
)

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_personal_transaction(
    payload: TransactionCreate,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Record a credit or debit against the caller's balance."""
    return await engine.record_personal_transaction(
        user_id=current_user["user_id"],
        direction=payload.type,
        amount=payload.amount,
        category=payload.category,
        source=payload.source,
        description=payload.description
    )


@router.get("", response_model=TransactionListResponse)
async def list_personal_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """List the caller's transactions, newest first."""
    items, total = await engine.list_personal_transactions(current_user["user_id"], page, limit)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=engine.page_size(limit)
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: int,
    current_user: dict = Depends(get_current_user),
    engine: LedgerEngine = Depends(get_ledger_engine)
):
    """Fetch one transaction the caller owns or shares through a group."""
    return await engine.get_transaction(current_user["user_id"], transaction_id)
