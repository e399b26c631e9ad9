from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class ShareType(str, Enum):
    """How an expense was divided among its participants."""
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"
    SHARES = "shares"

    @classmethod
    def _missing_(cls, value):
        # Stored rows call custom splits "amount"
        if value == "amount":
            return cls.CUSTOM
        return None


class ExpenseCategory(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    ACCOMMODATION = "accommodation"
    ACTIVITY = "activity"
    OTHER = "other"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


class ExclusionReason(str, Enum):
    MISSING_FX_RATE = "missing_fx_rate"
    INVALID_FX_RATE = "invalid_fx_rate"


class ExpenseShare(BaseModel):
    """One participant's portion of an expense, in the expense's own currency."""
    model_config = ConfigDict(frozen=True)

    participant_id: str
    share_amount: int = Field(ge=0)
    share_type: ShareType = ShareType.EQUAL
    share_value: Optional[Decimal] = None


class SplitParticipant(BaseModel):
    """Split input for one participant: a percentage, a weight or an amount."""
    participant_id: str
    share_value: Optional[Decimal] = None


class Expense(BaseModel):
    """
    An expense paid by one participant and split among several.

    Amounts are integer minor units in `currency`. `fx_rate` is the
    currency -> trip base currency snapshot taken when the expense was
    created; it is never recomputed.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    trip_id: str
    description: str
    amount: int = Field(gt=0)
    currency: str
    category: ExpenseCategory = ExpenseCategory.OTHER
    payer_id: str
    date: date
    fx_rate: Optional[Decimal] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    shares: list[ExpenseShare] = []

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def check_shares(self) -> "Expense":
        participant_ids = [s.participant_id for s in self.shares]
        if len(participant_ids) != len(set(participant_ids)):
            raise ValueError(f"Expense {self.id} lists a participant more than once")
        if self.shares_total != self.amount:
            raise ValueError(
                f"Shares of expense {self.id} sum to {self.shares_total}, expected {self.amount}"
            )
        return self

    @property
    def shares_total(self) -> int:
        return sum(s.share_amount for s in self.shares)


class Balance(BaseModel):
    """A participant's balance in a trip."""
    participant_id: str
    amount: int  # Positive = owed money, Negative = owes money


class Transfer(BaseModel):
    """A payment from one participant to another that the optimizer proposes."""
    from_id: str
    to_id: str
    amount: int = Field(gt=0)


class Settlement(BaseModel):
    """A settlement record persisted in the trip ledger."""
    id: str
    trip_id: str
    from_id: str
    to_id: str
    amount: int = Field(gt=0)
    currency: str
    status: SettlementStatus = SettlementStatus.PENDING
    note: Optional[str] = None
    settled_by: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.status == SettlementStatus.SETTLED

    @property
    def pair(self) -> tuple[str, str]:
        return self.from_id, self.to_id


class ExcludedExpense(BaseModel):
    """An expense left out of the balances, with the reason why."""
    expense_id: str
    description: str
    currency: str
    reason: ExclusionReason


class SettlementSummary(BaseModel):
    """Everything a client needs to render the trip's settle-up view."""
    trip_id: str
    base_currency: str
    balances: list[Balance] = []
    pending_settlements: list[Settlement] = []
    settled_settlements: list[Settlement] = []
    total_expenses: int = 0
    total_amount: int = 0
    excluded_expenses: list[ExcludedExpense] = []


class MarkPaidRequest(BaseModel):
    """Request body for marking a settlement as paid."""
    actor_id: str
    note: Optional[str] = Field(default=None, max_length=500)


class SplitRequest(BaseModel):
    """Request body for previewing how an expense would be split."""
    amount: int
    split_type: ShareType = ShareType.EQUAL
    participants: list[SplitParticipant]
