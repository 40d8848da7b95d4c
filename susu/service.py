from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from susu.config import Settings, get_logger, get_settings
from susu.cycle import CommissionCycleTracker
from susu.errors import InvalidAmountError, InvalidRateError
from susu.models import (
    Account,
    CommissionHistoryItem,
    CycleRebuildResult,
    CycleStatus,
    EntryKind,
    LedgerEntry,
    LedgerHistoryResponse,
    PendingCycle,
    PeriodTotals,
    RateChangeResult,
    ReconciliationReport,
    ReversalResult,
    WithdrawalResult,
)
from susu.money import MoneyLike, to_amount, to_money
from susu.rates import RateChangeAdjuster
from susu.reports import LedgerReports
from susu.reversal import ReversalEngine
from susu.storage import Storage, build_storage
from susu.withdrawal import WithdrawalProcessor

logger = get_logger(__name__)


class SusuLedgerService:
    def __init__(self, storage: Optional[Storage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or build_storage(self.settings)
        self.cycles = CommissionCycleTracker(self.storage, self.settings.full_withdrawal_policy)
        self.withdrawals = WithdrawalProcessor(self.storage, self.settings.full_withdrawal_policy)
        self.reversals = ReversalEngine(self.storage)
        self.rates = RateChangeAdjuster(self.storage, self.settings.min_rate)
        self.reports = LedgerReports(self.storage)

    def open_account(
        self,
        rate: MoneyLike,
        opening_balance: MoneyLike = Decimal("0.00"),
        account_id: Optional[UUID] = None,
        name: Optional[str] = None,
        opened_on: Optional[date] = None,
    ) -> Account:
        try:
            rate = to_amount(rate, "Rate")
        except InvalidAmountError as exc:
            raise InvalidRateError(str(exc)) from exc
        opening_balance = to_money(opening_balance)
        if opening_balance < 0:
            raise InvalidAmountError("Opening balance cannot be negative")
        if opening_balance > 0:
            to_amount(opening_balance, "Opening balance")

        now = datetime.now(timezone.utc)
        account = self.storage.add_account(Account(
            id=account_id or uuid4(),
            rate=rate,
            balance=Decimal("0.00"),
            name=name,
            created_at=now,
        ))
        logger.info("account_opened", account_id=str(account.id), rate=str(rate))

        if opening_balance > 0:
            self.deposit(account.id, opening_balance, opened_on or now.date(), notes="Opening balance")
        return self.storage.get_account(account.id)

    def deposit(
        self,
        account_id: UUID,
        amount: MoneyLike,
        occurred_on: date,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        amount = to_amount(amount, "Deposit amount")

        with self.storage.account_scope(account_id) as txn:
            entry = txn.append_entry(EntryKind.DEPOSIT, amount, occurred_on, notes=notes)

        logger.info(
            "deposit_recorded",
            account_id=str(account_id),
            amount=str(amount),
            balance_after=str(entry.balance_after),
        )
        return entry

    def get_account(self, account_id: UUID) -> Optional[Account]:
        return self.storage.get_account(account_id)

    def process_withdrawal(
        self,
        account_id: UUID,
        amount: MoneyLike,
        occurred_on: date,
        notes: Optional[str] = None,
    ) -> WithdrawalResult:
        return self.withdrawals.process_withdrawal(account_id, amount, occurred_on, notes)

    def reverse_withdrawal(self, withdrawal_id: UUID, reason: str) -> ReversalResult:
        return self.reversals.reverse_withdrawal(withdrawal_id, reason)

    def get_cycle_state(self, account_id: UUID) -> CycleStatus:
        return self.cycles.get(account_id)

    def reset_cycle(self, account_id: UUID) -> CycleStatus:
        return self.cycles.reset(account_id)

    def adjust_cycle(self, account_id: UUID, value: MoneyLike) -> CycleStatus:
        return self.cycles.adjust(account_id, value)

    def rebuild_cycle(self, account_id: UUID, dry_run: bool = False) -> CycleRebuildResult:
        return self.cycles.rebuild(account_id, dry_run)

    def update_rate(self, account_id: UUID, new_rate: MoneyLike) -> RateChangeResult:
        return self.rates.update_rate(account_id, new_rate)

    def commission_history(self, account_id: UUID) -> list[CommissionHistoryItem]:
        return self.reports.commission_history(account_id)

    def commission_totals(self, start: date, end: date, account_id: Optional[UUID] = None) -> PeriodTotals:
        return self.reports.commission_totals(start, end, account_id)

    def withdrawal_totals(self, start: date, end: date, account_id: Optional[UUID] = None) -> PeriodTotals:
        return self.reports.withdrawal_totals(start, end, account_id)

    def pending_cycles(self) -> list[PendingCycle]:
        return self.reports.pending_cycles()

    def get_ledger_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.reports.ledger_history(account_id, limit, offset)

    def reconcile(self, account_id: UUID) -> ReconciliationReport:
        return self.reports.reconcile(account_id)
