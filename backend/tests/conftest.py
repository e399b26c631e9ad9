import asyncio
import itertools
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

import pytest

from tripledger.models import Expense, ExpenseShare, Settlement, SettlementStatus
from tripledger.services.settlement import SettlementEngine


class InMemoryExpenseRepository:
    """Expense store holding already-authorized expenses for one or more trips."""

    def __init__(self, base_currency: str = "EUR"):
        self.base_currency = base_currency
        self.expenses: list[Expense] = []

    async def get_base_currency(self, trip_id: str) -> str:
        return self.base_currency

    async def list_expenses(self, trip_id: str) -> list[Expense]:
        return [e for e in self.expenses if e.trip_id == trip_id]


class InMemorySettlementRepository:
    """Settlement ledger with the same conditional-write rules as the Supabase store."""

    def __init__(self):
        self.records: dict[str, Settlement] = {}
        self.writes = 0

    async def get_by_trip(self, trip_id: str) -> list[Settlement]:
        records = [s for s in self.records.values() if s.trip_id == trip_id]
        # Let other writers run between the read and whatever follows it
        await asyncio.sleep(0)
        return records

    async def get(self, settlement_id: str) -> Optional[Settlement]:
        return self.records.get(settlement_id)

    async def upsert_pending(self, trip_id: str, settlements: Sequence[Settlement]) -> list[Settlement]:
        stored = []
        for settlement in settlements:
            current = self.records.get(settlement.id)
            if current is None:
                # One pending record per pair, like the unique index on the table
                current = next(
                    (s for s in self.records.values()
                     if s.trip_id == trip_id and s.pair == settlement.pair and not s.is_settled),
                    None,
                )
            if current is not None and current.is_settled:
                continue
            if current is not None:
                settlement = current.model_copy(update={
                    "amount": settlement.amount,
                    "currency": settlement.currency,
                })
            self.records[settlement.id] = settlement
            self.writes += 1
            stored.append(settlement)
        return stored

    async def delete_pending(self, trip_id: str, settlement_ids: Sequence[str]) -> None:
        for settlement_id in settlement_ids:
            current = self.records.get(settlement_id)
            if current is not None and current.trip_id == trip_id and not current.is_settled:
                del self.records[settlement_id]
                self.writes += 1

    async def mark_settled(
        self,
        settlement_id: str,
        actor_id: str,
        note: Optional[str],
        settled_at: datetime,
    ) -> Optional[Settlement]:
        current = self.records.get(settlement_id)
        if current is None or current.is_settled:
            return None
        updated = current.model_copy(update={
            "status": SettlementStatus.SETTLED,
            "settled_by": actor_id,
            "settled_at": settled_at,
            "note": note,
        })
        self.records[settlement_id] = updated
        self.writes += 1
        return updated


@pytest.fixture
def make_expense():
    """Factory for valid expenses. Shares map participant id -> share amount."""
    counter = itertools.count(1)

    def _make(
        payer_id: str,
        amount: int,
        shares: dict[str, int],
        currency: str = "EUR",
        fx_rate: Optional[Decimal] = None,
        trip_id: str = "trip1",
        description: str = "Dinner",
    ) -> Expense:
        return Expense(
            id=f"e{next(counter)}",
            trip_id=trip_id,
            description=description,
            amount=amount,
            currency=currency,
            payer_id=payer_id,
            date=date(2025, 2, 7),
            fx_rate=fx_rate,
            shares=[
                ExpenseShare(participant_id=pid, share_amount=share)
                for pid, share in shares.items()
            ],
        )

    return _make


@pytest.fixture
def expense_repo():
    return InMemoryExpenseRepository(base_currency="EUR")


@pytest.fixture
def settlement_repo():
    return InMemorySettlementRepository()


@pytest.fixture
def engine(expense_repo, settlement_repo):
    return SettlementEngine(expenses=expense_repo, settlements=settlement_repo)


@pytest.fixture
def three_way_dinner(make_expense):
    """A pays 6000 split equally among A, B and C."""
    return make_expense("A", 6000, {"A": 2000, "B": 2000, "C": 2000})
