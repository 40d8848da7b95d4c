from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class EntryKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    COMMISSION = "commission"
    REVERSAL = "reversal"


class FullWithdrawalPolicy(str, Enum):
    """How the balance left after a withdrawal is compared to one box.

    Evaluated once per withdrawal, on the balance before it.
    """

    INCLUSIVE = "inclusive"
    STRICT = "strict"

    def is_full(self, balance_after: Decimal, rate: Decimal) -> bool:
        if self is FullWithdrawalPolicy.STRICT:
            return balance_after < rate
        return balance_after <= rate


class Account(BaseModel):
    id: UUID
    rate: Decimal
    balance: Decimal
    name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: UUID
    account_id: UUID
    kind: EntryKind
    amount: Decimal
    balance_after: Decimal
    occurred_on: date
    related_entry_id: Optional[UUID] = None
    sequence: int
    created_at: datetime
    notes: Optional[str] = None
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    @property
    def ordering_key(self) -> tuple:
        return (self.occurred_on, self.sequence)


class CycleState(BaseModel):
    account_id: UUID
    cumulative: Decimal = Decimal("0.00")
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CycleStatus(BaseModel):
    account_id: UUID
    cumulative: Decimal
    threshold: Decimal
    remaining: Decimal
    reached: bool
    rate: Decimal
    balance: Decimal
    updated_at: Optional[datetime] = None


class OpenAccountRequest(BaseModel):
    rate: Decimal = Field(..., gt=0, max_digits=17, decimal_places=2, description="Box value")
    opening_balance: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=17, decimal_places=2)
    name: Optional[str] = None
    account_id: Optional[UUID] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"rate": 5.00, "opening_balance": 200.00, "name": "Ama Mensah"}
    })


class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=17, decimal_places=2)
    occurred_on: date
    notes: Optional[str] = None


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(
        ..., gt=0, max_digits=17, decimal_places=2, description="Amount the client asks to withdraw"
    )
    occurred_on: date
    notes: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 155.00, "occurred_on": "2024-03-04"}
    })


class ReverseWithdrawalRequest(BaseModel):
    reason: str = Field(..., description="Reason for reversal")


class RateChangeRequest(BaseModel):
    rate: Decimal = Field(..., max_digits=17, decimal_places=2)


class CycleAdjustRequest(BaseModel):
    cumulative: Decimal = Field(..., max_digits=17, decimal_places=2)


class CycleRebuildResult(BaseModel):
    account_id: UUID
    stored_cumulative: Decimal
    rebuilt_cumulative: Decimal
    drift: Decimal
    withdrawals_replayed: int
    withdrawals_skipped: int
    applied: bool


class WithdrawalTotals(BaseModel):
    requested: Decimal
    client_gets: Decimal
    commission: Decimal
    total_deduction: Decimal
    pages_completed: int
    full_withdrawal: bool
    balance_before: Decimal
    balance_after: Decimal
    cumulative_before: Decimal
    cumulative_after: Decimal
    threshold: Decimal


class WithdrawalResult(BaseModel):
    withdrawal_entry: LedgerEntry
    commission_entry: Optional[LedgerEntry] = None
    totals: WithdrawalTotals


class ReversalResult(BaseModel):
    reversal_entry: LedgerEntry
    commission_reversal_entry: Optional[LedgerEntry] = None
    restored_balance: Decimal
    restored_cumulative: Decimal


class RateChangeResult(BaseModel):
    account_id: UUID
    old_rate: Decimal
    new_rate: Decimal
    cumulative_adjusted: bool
    cumulative: Decimal


class CommissionHistoryItem(BaseModel):
    commission_entry: LedgerEntry
    withdrawal_amount: Optional[Decimal] = None
    withdrawal_date: Optional[date] = None


class PeriodTotals(BaseModel):
    kind: EntryKind
    start: date
    end: date
    account_id: Optional[UUID] = None
    total_amount: Decimal
    count: int


class PendingCycle(BaseModel):
    account_id: UUID
    name: Optional[str] = None
    rate: Decimal
    balance: Decimal
    cumulative: Decimal
    threshold: Decimal
    remaining: Decimal
    updated_at: Optional[datetime] = None


class ReconciliationReport(BaseModel):
    account_id: UUID
    stored_balance: Decimal
    ledger_balance: Decimal
    total_entries: int

    @property
    def balanced(self) -> bool:
        return self.stored_balance == self.ledger_balance


class LedgerHistoryResponse(BaseModel):
    account_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal
