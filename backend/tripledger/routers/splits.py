from fastapi import APIRouter

from ..models import ExpenseShare, SplitRequest
from ..services.splits import calculate_shares

router = APIRouter(prefix="/splits", tags=["Splits"])


@router.post("/preview", response_model=list[ExpenseShare])
async def preview_split(request: SplitRequest) -> list[ExpenseShare]:
    """
    Preview the per-participant shares of an expense.

    Shares always add up to the expense amount; leftover cents go to the
    first participants.
    """
    return calculate_shares(request.amount, request.split_type, request.participants)
