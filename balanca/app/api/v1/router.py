"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from balanca.app.api.v1.endpoints import transactions, groups, planned_expenses

router = APIRouter()

# Personal ledger
router.include_router(transactions.router)

# Group ledger
router.include_router(groups.router)

# Planned expenses
router.include_router(planned_expenses.router)
