"""
Storage interfaces used by the settlement engine, and their Supabase
implementations over the PostgREST API.

The engine only depends on the two Protocols, so tests can hand it
in-memory fakes.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from .config import get_settings
from .errors import InvalidExpenseError, StoreError, TripNotFoundError
from .models import Expense, ExpenseShare, Settlement, SettlementStatus

logger = logging.getLogger(__name__)


class ExpenseRepository(Protocol):
    """Read access to a trip's already-authorized expenses."""

    async def get_base_currency(self, trip_id: str) -> str:
        ...

    async def list_expenses(self, trip_id: str) -> list[Expense]:
        ...


class SettlementRepository(Protocol):
    """Durable settlement ledger, keyed by trip."""

    async def get_by_trip(self, trip_id: str) -> list[Settlement]:
        ...

    async def get(self, settlement_id: str) -> Optional[Settlement]:
        ...

    async def upsert_pending(self, trip_id: str, settlements: Sequence[Settlement]) -> list[Settlement]:
        """Write pending records. Returns the records the store ended up holding."""
        ...

    async def delete_pending(self, trip_id: str, settlement_ids: Sequence[str]) -> None:
        ...

    async def mark_settled(
        self,
        settlement_id: str,
        actor_id: str,
        note: Optional[str],
        settled_at: datetime,
    ) -> Optional[Settlement]:
        """Settle a pending record. Returns None if it was not pending."""
        ...


class SupabaseRepository:
    """Shared plumbing for Supabase REST calls."""

    def __init__(self, base_url: Optional[str] = None, service_key: Optional[str] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.service_key = service_key or settings.supabase_service_key
        self.timeout = settings.http_timeout_seconds

    def get_headers(self, prefer: str = "return=representation") -> dict[str, str]:
        """Get headers for Supabase REST API calls."""
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: str = "return=representation",
    ) -> list[dict]:
        """
        Call a table endpoint and return the decoded rows.

        Raises:
            StoreError: On transport failures or non-2xx responses
        """
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    url,
                    headers=self.get_headers(prefer),
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            raise StoreError(
                f"{method} {table} returned {response.status_code}",
                details={"status_code": response.status_code, "body": response.text},
            )

        if response.status_code == 204 or "return=minimal" in prefer:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data or []


class SupabaseExpenseRepository(SupabaseRepository):
    """Reads trips, expenses and expense_participants."""

    async def get_base_currency(self, trip_id: str) -> str:
        rows = await self.request(
            "GET",
            "trips",
            params={"id": f"eq.{trip_id}", "select": "base_currency"},
        )
        if not rows:
            raise TripNotFoundError(trip_id)
        return (rows[0].get("base_currency") or "EUR").upper()

    async def list_expenses(self, trip_id: str) -> list[Expense]:
        rows = await self.request(
            "GET",
            "expenses",
            params={
                "trip_id": f"eq.{trip_id}",
                "select": "*,expense_participants(*)",
                "order": "date.asc,created_at.asc",
            },
        )
        return [expense_from_row(row) for row in rows]


class SupabaseSettlementRepository(SupabaseRepository):
    """Reads and writes the settlements table."""

    async def get_by_trip(self, trip_id: str) -> list[Settlement]:
        rows = await self.request(
            "GET",
            "settlements",
            params={
                "trip_id": f"eq.{trip_id}",
                "select": "*",
                "order": "created_at.asc,id.asc",
            },
        )
        return [settlement_from_row(row) for row in rows]

    async def get(self, settlement_id: str) -> Optional[Settlement]:
        rows = await self.request(
            "GET",
            "settlements",
            params={"id": f"eq.{settlement_id}", "select": "*"},
        )
        return settlement_from_row(rows[0]) if rows else None

    async def upsert_pending(self, trip_id: str, settlements: Sequence[Settlement]) -> list[Settlement]:
        """
        Write pending records and return them as stored.

        Updates are conditional on the row still being pending, so a record
        settled concurrently is left alone. Rows that don't exist yet are
        inserted. The table allows one pending row per (trip, from, to), so
        when another writer inserted that pair first its row is updated and
        returned instead.
        """
        stored = []
        for settlement in settlements:
            rows = await self._update_pending(trip_id, {"id": f"eq.{settlement.id}"}, settlement)
            if not rows:
                rows = await self._insert_pending(trip_id, settlement)
            if rows:
                stored.append(settlement_from_row(rows[0]))
            else:
                logger.warning("Settlement %s was settled while reconciling, left as is", settlement.id)
        return stored

    async def _update_pending(self, trip_id: str, match: dict[str, str], settlement: Settlement) -> list[dict]:
        return await self.request(
            "PATCH",
            "settlements",
            params={
                **match,
                "trip_id": f"eq.{trip_id}",
                "status": f"eq.{SettlementStatus.PENDING.value}",
            },
            json={
                "amount": settlement.amount,
                "currency": settlement.currency,
            },
        )

    async def _insert_pending(self, trip_id: str, settlement: Settlement) -> list[dict]:
        try:
            return await self.request("POST", "settlements", json=settlement_to_row(settlement))
        except StoreError as e:
            if e.details.get("status_code") != 409:
                raise
        # Unique violation: the pair, or this id once settled, already exists
        return await self._update_pending(
            trip_id,
            {
                "from_user_id": f"eq.{settlement.from_id}",
                "to_user_id": f"eq.{settlement.to_id}",
            },
            settlement,
        )

    async def delete_pending(self, trip_id: str, settlement_ids: Sequence[str]) -> None:
        if not settlement_ids:
            return
        await self.request(
            "DELETE",
            "settlements",
            params={
                "trip_id": f"eq.{trip_id}",
                "status": f"eq.{SettlementStatus.PENDING.value}",
                "id": f"in.({','.join(settlement_ids)})",
            },
            prefer="return=minimal",
        )

    async def mark_settled(
        self,
        settlement_id: str,
        actor_id: str,
        note: Optional[str],
        settled_at: datetime,
    ) -> Optional[Settlement]:
        rows = await self.request(
            "PATCH",
            "settlements",
            params={
                "id": f"eq.{settlement_id}",
                "status": f"eq.{SettlementStatus.PENDING.value}",
            },
            json={
                "status": SettlementStatus.SETTLED.value,
                "settled_by": actor_id,
                "settled_at": settled_at.isoformat(),
                "note": note,
            },
        )
        return settlement_from_row(rows[0]) if rows else None


def expense_from_row(row: dict) -> Expense:
    """
    Build an Expense from an `expenses` row with embedded participants.

    Raises:
        InvalidExpenseError: If the row breaks an expense invariant
    """
    try:
        return Expense(
            id=row["id"],
            trip_id=row["trip_id"],
            description=row.get("description") or "",
            amount=row["amount"],
            currency=row["currency"],
            category=row.get("category") or "other",
            payer_id=row["payer_id"],
            # Stored as a timestamp, only the day matters here
            date=str(row["date"])[:10],
            fx_rate=row.get("fx_rate"),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            shares=[
                ExpenseShare(
                    participant_id=p["user_id"],
                    share_amount=p["share_amount"],
                    share_type=p.get("share_type") or "equal",
                    share_value=p.get("share_value"),
                )
                for p in row.get("expense_participants") or []
            ],
        )
    except (KeyError, ValidationError) as e:
        raise InvalidExpenseError(
            f"Expense {row.get('id')} is invalid: {e}",
            details={"expense_id": row.get("id")},
        ) from e


def settlement_from_row(row: dict) -> Settlement:
    return Settlement(
        id=row["id"],
        trip_id=row["trip_id"],
        from_id=row["from_user_id"],
        to_id=row["to_user_id"],
        amount=row["amount"],
        currency=row["currency"],
        status=row.get("status") or SettlementStatus.PENDING.value,
        note=row.get("note"),
        settled_by=row.get("settled_by"),
        settled_at=row.get("settled_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def settlement_to_row(settlement: Settlement) -> dict:
    return {
        "id": settlement.id,
        "trip_id": settlement.trip_id,
        "from_user_id": settlement.from_id,
        "to_user_id": settlement.to_id,
        "amount": settlement.amount,
        "currency": settlement.currency,
        "status": settlement.status.value,
        "note": settlement.note,
    }
