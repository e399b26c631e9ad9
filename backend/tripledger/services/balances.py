import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import InvalidExpenseError
from ..models import ExcludedExpense, Expense, Settlement
from .exchange import convert_amount, resolve_rate

logger = logging.getLogger(__name__)


@dataclass
class BalanceResult:
    """Output of the balance calculation for one trip."""
    balances: dict[str, int] = field(default_factory=dict)
    excluded: list[ExcludedExpense] = field(default_factory=list)
    total_amount: int = 0


def calculate_balances(expenses: Iterable[Expense], base_currency: str) -> BalanceResult:
    """
    Calculate the net balance of every participant across a set of expenses.

    Positive balance = participant is owed money (paid more than their share)
    Negative balance = participant owes money (consumed more than they paid)

    Foreign-currency expenses are converted with their stored FX snapshot.
    Expenses without a usable snapshot are skipped and reported in
    `excluded`; they never raise.

    Args:
        expenses: Expenses with their shares
        base_currency: The trip base currency

    Returns:
        BalanceResult whose balances always sum to exactly zero

    Raises:
        InvalidExpenseError: If an expense's shares don't add up to its amount
    """
    result = BalanceResult()
    balances = result.balances

    for expense in expenses:
        if expense.shares_total != expense.amount:
            raise InvalidExpenseError(
                f"Shares of expense {expense.id} sum to {expense.shares_total}, "
                f"expected {expense.amount}",
                details={"expense_id": expense.id},
            )

        rate, reason = resolve_rate(expense, base_currency)
        if reason is not None:
            logger.warning(
                "Excluding expense %s (%s %s): %s",
                expense.id, expense.amount, expense.currency, reason.value,
            )
            result.excluded.append(ExcludedExpense(
                expense_id=expense.id,
                description=expense.description,
                currency=expense.currency,
                reason=reason,
            ))
            continue

        # Payer gets credit for the whole converted amount
        converted = convert_amount(expense.amount, rate)
        balances[expense.payer_id] = balances.get(expense.payer_id, 0) + converted
        result.total_amount += converted

        # Each share is converted on its own
        for share in expense.shares:
            owed = convert_amount(share.share_amount, rate)
            balances[share.participant_id] = balances.get(share.participant_id, 0) - owed

    _absorb_rounding_drift(balances)
    return result


def _absorb_rounding_drift(balances: dict[str, int]) -> None:
    """Push any conversion rounding drift onto the largest balance so the total is zero."""
    drift = sum(balances.values())
    if drift == 0:
        return

    target = min(balances, key=lambda pid: (-abs(balances[pid]), pid))
    logger.debug("Absorbing %s minor units of rounding drift into %s", drift, target)
    balances[target] -= drift


def apply_payments(
    balances: dict[str, int],
    settled: Iterable[Settlement],
    base_currency: str,
) -> dict[str, int]:
    """
    Treat settled settlements as payments already made.

    The payer's balance goes up (owes less) and the recipient's goes down
    (is owed less). Returns a new dict; the input is not modified.
    """
    outstanding = dict(balances)
    for settlement in settled:
        if settlement.currency.upper() != base_currency.upper():
            logger.warning(
                "Skipping settled settlement %s in %s, trip base currency is %s",
                settlement.id, settlement.currency, base_currency,
            )
            continue
        outstanding[settlement.from_id] = outstanding.get(settlement.from_id, 0) + settlement.amount
        outstanding[settlement.to_id] = outstanding.get(settlement.to_id, 0) - settlement.amount
    return outstanding
