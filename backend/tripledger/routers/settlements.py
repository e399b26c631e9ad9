from fastapi import APIRouter, Depends

from ..dependencies import get_settlement_engine
from ..models import Balance, MarkPaidRequest, Settlement, SettlementSummary
from ..services.settlement import SettlementEngine

router = APIRouter(tags=["Settlements"])


@router.get("/trips/{trip_id}/summary", response_model=SettlementSummary)
async def get_summary(
    trip_id: str,
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> SettlementSummary:
    """
    Get balances, pending and settled settlements for a trip.

    Recomputes the optimal settlements and brings the pending ones in the
    ledger up to date. Expenses without an FX snapshot are listed under
    `excluded_expenses` instead of failing the request.
    """
    return await engine.get_settlement_summary(trip_id)


@router.get("/trips/{trip_id}/balances", response_model=list[Balance])
async def get_balances(
    trip_id: str,
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> list[Balance]:
    """
    Get the outstanding balance for each participant in a trip.

    Positive balance = participant is owed money (paid more than their share)
    Negative balance = participant owes money (consumed more than they paid)
    """
    return await engine.get_trip_balances(trip_id)


@router.get("/trips/{trip_id}/settlements", response_model=list[Settlement])
async def get_settlements(
    trip_id: str,
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> list[Settlement]:
    """Get the pending payments that settle all balances in a trip."""
    summary = await engine.get_settlement_summary(trip_id)
    return summary.pending_settlements


@router.post("/settlements/{settlement_id}/mark-paid", response_model=Settlement)
async def mark_paid(
    settlement_id: str,
    request: MarkPaidRequest,
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> Settlement:
    """
    Mark a settlement as paid.

    Only the payer or the recipient may do this, and only once.
    """
    return await engine.mark_settlement_as_paid(settlement_id, request.actor_id, request.note)
