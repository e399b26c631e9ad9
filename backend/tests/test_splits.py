"""Tests for expense split calculation."""

from decimal import Decimal

import pytest

from tripledger.errors import InvalidExpenseError
from tripledger.models import ShareType, SplitParticipant
from tripledger.services.splits import calculate_shares


def _people(*ids, values=None):
    values = values or [None] * len(ids)
    return [
        SplitParticipant(participant_id=pid, share_value=None if v is None else Decimal(str(v)))
        for pid, v in zip(ids, values)
    ]


def _amounts(shares):
    return [s.share_amount for s in shares]


class TestEqualSplit:

    def test_even_amount(self):
        shares = calculate_shares(6000, ShareType.EQUAL, _people("A", "B", "C"))

        assert _amounts(shares) == [2000, 2000, 2000]
        assert all(s.share_type == ShareType.EQUAL for s in shares)
        assert all(s.share_value is None for s in shares)

    def test_remainder_goes_to_first_participants(self):
        shares = calculate_shares(100, ShareType.EQUAL, _people("A", "B", "C"))

        assert _amounts(shares) == [34, 33, 33]

    def test_two_cent_remainder(self):
        shares = calculate_shares(101, ShareType.EQUAL, _people("A", "B", "C"))

        assert _amounts(shares) == [34, 34, 33]

    def test_single_participant_takes_everything(self):
        shares = calculate_shares(999, ShareType.EQUAL, _people("A"))

        assert _amounts(shares) == [999]


class TestPercentageSplit:

    def test_exact_percentages(self):
        shares = calculate_shares(10000, ShareType.PERCENTAGE, _people("A", "B", values=[60, 40]))

        assert _amounts(shares) == [6000, 4000]
        assert shares[0].share_value == Decimal("60")

    def test_remainder_goes_to_largest_fraction(self):
        # 333.3 / 333.3 / 333.4 of 1000 -> floors 333/333/333, last has the biggest fraction
        shares = calculate_shares(
            1000, ShareType.PERCENTAGE, _people("A", "B", "C", values=["33.33", "33.33", "33.34"])
        )

        assert _amounts(shares) == [333, 333, 334]

    def test_percentages_must_sum_to_100(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(1000, ShareType.PERCENTAGE, _people("A", "B", values=[50, 40]))

    def test_missing_percentage(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(1000, ShareType.PERCENTAGE, _people("A", "B", values=[100, None]))


class TestSharesSplit:

    def test_weighted_split(self):
        shares = calculate_shares(9000, ShareType.SHARES, _people("A", "B", values=[1, 2]))

        assert _amounts(shares) == [3000, 6000]

    def test_weighted_split_with_remainder(self):
        shares = calculate_shares(100, ShareType.SHARES, _people("A", "B", "C", values=[1, 1, 1]))

        assert _amounts(shares) == [34, 33, 33]

    def test_weights_must_be_positive(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(100, ShareType.SHARES, _people("A", "B", values=[1, 0]))


class TestCustomSplit:

    def test_amounts_are_taken_verbatim(self):
        shares = calculate_shares(5000, ShareType.CUSTOM, _people("A", "B", values=[1234, 3766]))

        assert _amounts(shares) == [1234, 3766]

    def test_amounts_must_add_up(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(5000, ShareType.CUSTOM, _people("A", "B", values=[1000, 1000]))

    def test_fractional_amounts_are_rejected(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(100, ShareType.CUSTOM, _people("A", "B", values=["50.5", "49.5"]))

    def test_stored_amount_alias(self):
        """Rows store custom splits as "amount"."""
        assert ShareType("amount") == ShareType.CUSTOM


class TestSplitValidation:

    def test_no_participants(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(100, ShareType.EQUAL, [])

    def test_non_positive_amount(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(0, ShareType.EQUAL, _people("A"))

    def test_duplicate_participant(self):
        with pytest.raises(InvalidExpenseError):
            calculate_shares(100, ShareType.EQUAL, _people("A", "A"))
