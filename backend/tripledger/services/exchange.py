"""
FX snapshot handling.

Rates are looked up once, when an expense is created, and stored on the
expense. Balance calculation only ever reads that stored snapshot.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Protocol, Union

import httpx

from ..config import get_settings
from ..models import Expense, ExclusionReason

logger = logging.getLogger(__name__)


class RateProvider(Protocol):
    """External source of historical exchange rates."""

    async def get_rate(
        self, on: date, from_currency: str, to_currency: str
    ) -> Optional[Decimal]:
        ...


class FrankfurterRateProvider:
    """Fetches historical rates from the frankfurter.app API."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.fx_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.fx_timeout_seconds

    async def get_rate(
        self, on: date, from_currency: str, to_currency: str
    ) -> Optional[Decimal]:
        """
        Fetch the rate converting one unit of `from_currency` into `to_currency`.

        Returns:
            The exchange rate, or None if the API has no rate for that day
        """
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{self.base_url}/{on.isoformat()}",
                params={
                    "from": from_currency.upper(),
                    "to": to_currency.upper(),
                },
                timeout=self.timeout,
            )

        if response.status_code != 200:
            return None

        rate = response.json().get("rates", {}).get(to_currency.upper())
        if rate is None:
            return None
        return Decimal(str(rate))


async def capture_fx_snapshot(
    provider: RateProvider,
    currency: str,
    base_currency: str,
    on: date,
) -> Optional[Decimal]:
    """
    Get the rate to freeze onto a new expense.

    Args:
        provider: Where to look the rate up
        currency: The expense currency
        base_currency: The trip base currency
        on: The expense date

    Returns:
        The rate, or None when the currencies match or no rate is available.
        A None snapshot on a foreign-currency expense excludes it from balances.
    """
    currency = currency.upper()
    base_currency = base_currency.upper()
    if currency == base_currency:
        return None

    try:
        rate = await provider.get_rate(on, currency, base_currency)
    except httpx.HTTPError as e:
        logger.warning("FX lookup failed for %s->%s on %s: %s", currency, base_currency, on, e)
        return None

    if rate is None or not is_usable_rate(rate):
        logger.warning("FX rate unavailable for %s->%s on %s", currency, base_currency, on)
        return None
    return rate


def is_usable_rate(rate: Union[Decimal, float, int]) -> bool:
    """A snapshot is usable when it is a finite, strictly positive number."""
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError):
        return False
    return value.is_finite() and value > 0


def convert_amount(amount: int, rate: Decimal) -> int:
    """Convert minor units with a snapshot rate, rounding half up."""
    return int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_rate(
    expense: Expense, base_currency: str
) -> tuple[Optional[Decimal], Optional[ExclusionReason]]:
    """
    Pick the conversion rate for an expense.

    Returns:
        Tuple of (rate, exclusion reason). Exactly one of them is None.
    """
    if expense.currency == base_currency.upper():
        return Decimal("1"), None
    if expense.fx_rate is None:
        return None, ExclusionReason.MISSING_FX_RATE
    if not is_usable_rate(expense.fx_rate):
        return None, ExclusionReason.INVALID_FX_RATE
    return expense.fx_rate, None
