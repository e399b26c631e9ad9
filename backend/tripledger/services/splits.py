from decimal import Decimal, ROUND_FLOOR
from typing import Sequence

from ..errors import InvalidExpenseError
from ..models import ExpenseShare, ShareType, SplitParticipant


def calculate_shares(
    amount: int,
    split_type: ShareType,
    participants: Sequence[SplitParticipant],
) -> list[ExpenseShare]:
    """
    Divide an expense amount among participants.

    The result always sums to exactly `amount`. Leftover minor units go to
    the participants with the largest fractional remainders, earlier
    participants first on ties, so an equal split of 100 among three is
    34/33/33.

    Args:
        amount: Expense amount in minor units
        split_type: How to interpret each participant's share_value
        participants: Who takes part, in display order

    Returns:
        One ExpenseShare per participant, in input order

    Raises:
        InvalidExpenseError: If the split inputs can't produce valid shares
    """
    if amount <= 0:
        raise InvalidExpenseError("Expense amount must be positive")
    if not participants:
        raise InvalidExpenseError("An expense needs at least one participant")

    ids = [p.participant_id for p in participants]
    if len(ids) != len(set(ids)):
        raise InvalidExpenseError("A participant can only appear once in a split")

    if split_type == ShareType.CUSTOM:
        amounts = _custom_amounts(amount, participants)
    elif split_type == ShareType.EQUAL:
        amounts = _distribute(amount, [Decimal(1)] * len(participants))
    elif split_type == ShareType.PERCENTAGE:
        amounts = _distribute(amount, _percentages(participants))
    else:
        amounts = _distribute(amount, _weights(participants))

    return [
        ExpenseShare(
            participant_id=p.participant_id,
            share_amount=share_amount,
            share_type=split_type,
            share_value=None if split_type == ShareType.EQUAL else p.share_value,
        )
        for p, share_amount in zip(participants, amounts)
    ]


def _distribute(amount: int, weights: list[Decimal]) -> list[int]:
    total_weight = sum(weights)
    exact = [Decimal(amount) * w / total_weight for w in weights]
    floors = [int(x.to_integral_value(rounding=ROUND_FLOOR)) for x in exact]

    leftover = amount - sum(floors)
    order = sorted(range(len(weights)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return floors


def _percentages(participants: Sequence[SplitParticipant]) -> list[Decimal]:
    values = [p.share_value for p in participants]
    if any(v is None or v < 0 for v in values):
        raise InvalidExpenseError("Percentage splits need a non-negative percentage for everyone")
    if sum(values) != 100:
        raise InvalidExpenseError(f"Percentages sum to {sum(values)}, expected 100")
    return values


def _weights(participants: Sequence[SplitParticipant]) -> list[Decimal]:
    values = [p.share_value for p in participants]
    if any(v is None or v <= 0 for v in values):
        raise InvalidExpenseError("Share splits need a positive number of shares for everyone")
    return values


def _custom_amounts(amount: int, participants: Sequence[SplitParticipant]) -> list[int]:
    values = [p.share_value for p in participants]
    if any(v is None or v < 0 or v != v.to_integral_value() for v in values):
        raise InvalidExpenseError("Custom splits need a whole, non-negative amount for everyone")

    amounts = [int(v) for v in values]
    if sum(amounts) != amount:
        raise InvalidExpenseError(f"Custom amounts sum to {sum(amounts)}, expected {amount}")
    return amounts
