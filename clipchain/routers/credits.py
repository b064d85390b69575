"""
Credits Router
Balance, history and top-ups
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ..models.credits import AddCreditsRequest, CreditBalance, CreditTransaction
from ..services.credit_ledger import CreditLedger, get_credit_ledger
from .dependencies import get_user_id

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalance)
async def get_balance(
    user_id: str = Depends(get_user_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.get_balance(user_id)


@router.get("/history", response_model=List[CreditTransaction])
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    """Most recent charges first."""
    return await ledger.list_transactions(user_id, limit)


@router.post("/add", response_model=CreditBalance)
async def add_credits(
    request: AddCreditsRequest,
    user_id: str = Depends(get_user_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.add_credits(user_id, request.amount)
