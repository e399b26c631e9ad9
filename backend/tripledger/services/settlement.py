import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from ..errors import (
    ConsistencyError,
    SettlementNotFoundError,
    SettlementPermissionError,
    SettlementStateError,
)
from ..models import Balance, Settlement, SettlementSummary, Transfer
from ..repositories import ExpenseRepository, SettlementRepository
from .balances import apply_payments, calculate_balances
from .reconcile import ReconciliationPlan, plan_reconciliation

logger = logging.getLogger(__name__)


def calculate_settlements(balances: dict[str, int]) -> list[Transfer]:
    """
    Calculate optimal settlements using a greedy algorithm.

    Repeatedly matches the largest debtor with the largest creditor until
    all balances are settled. Ties go to the lower participant id, so the
    same balances always produce the same transfers.

    Args:
        balances: Dict mapping participant_id to their balance in minor units

    Returns:
        List of Transfer objects representing payments to make

    Raises:
        ConsistencyError: If the balances don't sum to zero
    """
    total = sum(balances.values())
    if total != 0:
        raise ConsistencyError(
            f"Balances sum to {total}, expected 0",
            details={"imbalance": total},
        )

    # Separate creditors (positive) and debtors (negative)
    creditors: list[tuple[str, int]] = []
    debtors: list[tuple[str, int]] = []

    for pid, balance in balances.items():
        if balance > 0:
            creditors.append((pid, balance))
        elif balance < 0:
            debtors.append((pid, -balance))  # Store as positive amount owed

    transfers: list[Transfer] = []

    while creditors and debtors:
        # Largest first, lower id breaks ties
        creditors.sort(key=lambda x: (-x[1], x[0]))
        debtors.sort(key=lambda x: (-x[1], x[0]))

        creditor_id, credit_amount = creditors.pop(0)
        debtor_id, debt_amount = debtors.pop(0)

        settle_amount = min(credit_amount, debt_amount)
        transfers.append(Transfer(from_id=debtor_id, to_id=creditor_id, amount=settle_amount))

        if credit_amount > settle_amount:
            creditors.append((creditor_id, credit_amount - settle_amount))
        if debt_amount > settle_amount:
            debtors.append((debtor_id, debt_amount - settle_amount))

    return transfers


class TripLocks:
    """
    One asyncio lock per trip, serializing ledger writers within this process.

    A trip's lock only lives while someone holds or waits for it, so the
    registry stays as small as the number of trips being worked on.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __contains__(self, trip_id: str) -> bool:
        return trip_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, trip_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(trip_id, asyncio.Lock())
        self._holders[trip_id] = self._holders.get(trip_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[trip_id] -= 1
            if not self._holders[trip_id]:
                del self._holders[trip_id]
                del self._locks[trip_id]


class SettlementEngine:
    """
    Computes trip balances and keeps the settlement ledger in step with them.

    Storage is injected: any ExpenseRepository / SettlementRepository pair
    will do, which is how tests run against in-memory fakes.
    """

    def __init__(
        self,
        expenses: ExpenseRepository,
        settlements: SettlementRepository,
        locks: Optional[TripLocks] = None,
    ):
        self.expenses = expenses
        self.settlements = settlements
        self.locks = locks or TripLocks()

    async def get_settlement_summary(self, trip_id: str) -> SettlementSummary:
        """
        Recompute balances for a trip and reconcile its pending settlements.

        Settled settlements count as payments already made, so they never
        show up again as pending debts.
        """
        base_currency = await self.expenses.get_base_currency(trip_id)
        expenses = await self.expenses.list_expenses(trip_id)
        result = calculate_balances(expenses, base_currency)

        async with self.locks.hold(trip_id):
            existing = await self.settlements.get_by_trip(trip_id)
            settled = [s for s in existing if s.is_settled]
            outstanding = apply_payments(result.balances, settled, base_currency)
            transfers = calculate_settlements(outstanding)
            plan = plan_reconciliation(trip_id, transfers, existing, base_currency)
            pending = await self._apply_plan(trip_id, plan)

        return SettlementSummary(
            trip_id=trip_id,
            base_currency=base_currency,
            balances=_to_balance_list(outstanding),
            pending_settlements=pending,
            settled_settlements=plan.settled,
            total_expenses=len(expenses),
            total_amount=result.total_amount,
            excluded_expenses=result.excluded,
        )

    async def get_trip_balances(self, trip_id: str) -> list[Balance]:
        """Outstanding balances for a trip, without touching the ledger."""
        base_currency = await self.expenses.get_base_currency(trip_id)
        expenses = await self.expenses.list_expenses(trip_id)
        result = calculate_balances(expenses, base_currency)

        existing = await self.settlements.get_by_trip(trip_id)
        outstanding = apply_payments(
            result.balances, [s for s in existing if s.is_settled], base_currency
        )
        return _to_balance_list(outstanding)

    async def mark_settlement_as_paid(
        self,
        settlement_id: str,
        actor_id: str,
        note: Optional[str] = None,
    ) -> Settlement:
        """
        Mark a pending settlement as paid.

        Raises:
            SettlementNotFoundError: If the settlement doesn't exist
            SettlementPermissionError: If the actor is not the payer or the payee
            SettlementStateError: If the settlement is already settled
        """
        settlement = await self.settlements.get(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(settlement_id)
        _check_can_settle(settlement, actor_id)

        note = (note or "").strip() or None
        async with self.locks.hold(settlement.trip_id):
            # A reconcile may have removed or replaced it while we waited
            settlement = await self.settlements.get(settlement_id)
            if settlement is None:
                raise SettlementNotFoundError(settlement_id)
            _check_can_settle(settlement, actor_id)

            updated = await self.settlements.mark_settled(
                settlement_id, actor_id, note, datetime.now(timezone.utc)
            )
            if updated is None:
                # Changed by another process between the read and the write
                if await self.settlements.get(settlement_id) is None:
                    raise SettlementNotFoundError(settlement_id)
                raise _already_settled(settlement_id)

        logger.info("Settlement %s marked as paid by %s", settlement_id, actor_id)
        return updated

    async def _apply_plan(self, trip_id: str, plan: ReconciliationPlan) -> list[Settlement]:
        """Write the plan and return the pending settlements as the store holds them."""
        if not plan.has_changes:
            return plan.pending

        # Deletes go first so a pair never has two pending rows
        if plan.to_delete:
            await self.settlements.delete_pending(trip_id, plan.to_delete)
        stored: list[Settlement] = []
        if plan.to_upsert:
            stored = await self.settlements.upsert_pending(trip_id, plan.to_upsert)

        logger.info(
            "Reconciled trip %s: %d pending written, %d removed",
            trip_id, len(plan.to_upsert), len(plan.to_delete),
        )

        # Another writer may already own a pair, in which case its record won
        by_pair = {s.pair: s for s in stored}
        return [by_pair.get(s.pair, s) for s in plan.pending]


def _to_balance_list(balances: dict[str, int]) -> list[Balance]:
    return [
        Balance(participant_id=pid, amount=amount)
        for pid, amount in sorted(balances.items())
    ]


def _check_can_settle(settlement: Settlement, actor_id: str) -> None:
    if actor_id not in settlement.pair:
        raise SettlementPermissionError(
            "Only the payer or the recipient can mark a settlement as paid",
            details={"settlement_id": settlement.id, "actor_id": actor_id},
        )
    if settlement.is_settled:
        raise _already_settled(settlement.id)


def _already_settled(settlement_id: str) -> SettlementStateError:
    return SettlementStateError(
        f"Settlement {settlement_id} is already settled",
        details={"settlement_id": settlement_id},
    )
