"""
Reconciliation of freshly optimized transfers against the settlement ledger.

Settled records are history: they are passed through untouched. Pending
records are matched to desired transfers by their (from, to) pair, so an
unchanged trip keeps the same settlement ids between recomputations.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..models import Settlement, SettlementStatus, Transfer


@dataclass
class ReconciliationPlan:
    """The ledger writes needed to make pending records match the desired transfers."""
    pending: list[Settlement] = field(default_factory=list)
    settled: list[Settlement] = field(default_factory=list)
    to_upsert: list[Settlement] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_upsert or self.to_delete)

    @property
    def history(self) -> list[Settlement]:
        return self.pending + self.settled


def plan_reconciliation(
    trip_id: str,
    transfers: Iterable[Transfer],
    existing: Iterable[Settlement],
    currency: str,
    now: Optional[datetime] = None,
) -> ReconciliationPlan:
    """
    Diff desired transfers against the ledger.

    Args:
        trip_id: The trip ID
        transfers: Optimizer output, in order
        existing: Every settlement currently stored for the trip, oldest first
        currency: Trip base currency the transfers are expressed in
        now: Timestamp for new and updated records (defaults to UTC now)

    Returns:
        ReconciliationPlan with the final pending list in transfer order
    """
    now = now or datetime.now(timezone.utc)
    plan = ReconciliationPlan()

    # Oldest pending record wins when legacy data holds duplicates for a pair
    pending_by_pair: dict[tuple[str, str], Settlement] = {}
    for settlement in existing:
        if settlement.is_settled:
            plan.settled.append(settlement)
        elif settlement.pair in pending_by_pair:
            plan.to_delete.append(settlement.id)
        else:
            pending_by_pair[settlement.pair] = settlement

    for transfer in transfers:
        pair = (transfer.from_id, transfer.to_id)
        record = pending_by_pair.pop(pair, None)

        if record is None:
            record = Settlement(
                id=str(uuid.uuid4()),
                trip_id=trip_id,
                from_id=transfer.from_id,
                to_id=transfer.to_id,
                amount=transfer.amount,
                currency=currency,
                status=SettlementStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            plan.to_upsert.append(record)
        elif record.amount != transfer.amount or record.currency != currency:
            record = record.model_copy(
                update={"amount": transfer.amount, "currency": currency, "updated_at": now}
            )
            plan.to_upsert.append(record)

        plan.pending.append(record)

    # Whatever is left no longer corresponds to any debt
    plan.to_delete.extend(s.id for s in pending_by_pair.values())
    return plan
