from datetime import date
from typing import Optional
from uuid import UUID

from susu.errors import AccountNotFoundError
from susu.models import (
    CommissionHistoryItem,
    CycleState,
    EntryKind,
    LedgerHistoryResponse,
    PendingCycle,
    PeriodTotals,
    ReconciliationReport,
)
from susu.money import ZERO, page_threshold
from susu.storage import Storage


class LedgerReports:
    """Read-only projections over the ledger. None of these take an account scope."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def commission_history(self, account_id: UUID) -> list[CommissionHistoryItem]:
        self._require_account(account_id)
        items = []
        for entry in self.storage.find_entries(account_id=account_id, kind=EntryKind.COMMISSION):
            withdrawal = (
                self.storage.get_entry(entry.related_entry_id) if entry.related_entry_id else None
            )
            items.append(CommissionHistoryItem(
                commission_entry=entry,
                withdrawal_amount=abs(withdrawal.amount) if withdrawal else None,
                withdrawal_date=withdrawal.occurred_on if withdrawal else None,
            ))
        items.sort(key=lambda i: i.commission_entry.ordering_key, reverse=True)
        return items

    def commission_totals(
        self, start: date, end: date, account_id: Optional[UUID] = None
    ) -> PeriodTotals:
        return self._period_totals(EntryKind.COMMISSION, start, end, account_id)

    def withdrawal_totals(
        self, start: date, end: date, account_id: Optional[UUID] = None
    ) -> PeriodTotals:
        return self._period_totals(EntryKind.WITHDRAWAL, start, end, account_id)

    def pending_cycles(self) -> list[PendingCycle]:
        """Accounts part-way through a page, furthest along first."""
        pending = []
        for account in self.storage.list_accounts():
            cycle = self.storage.get_cycle(account.id) or CycleState(account_id=account.id)
            threshold = page_threshold(account.rate)
            if ZERO < cycle.cumulative < threshold:
                pending.append(PendingCycle(
                    account_id=account.id,
                    name=account.name,
                    rate=account.rate,
                    balance=account.balance,
                    cumulative=cycle.cumulative,
                    threshold=threshold,
                    remaining=threshold - cycle.cumulative,
                    updated_at=cycle.updated_at,
                ))
        pending.sort(key=lambda p: p.cumulative, reverse=True)
        return pending

    def ledger_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self._require_account(account_id)
        all_entries = self.storage.find_entries(account_id=account_id)
        all_entries.sort(key=lambda e: e.ordering_key, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            account_id=account_id,
            entries=paginated,
            total_count=len(all_entries),
            current_balance=account.balance,
        )

    def reconcile(self, account_id: UUID) -> ReconciliationReport:
        account = self._require_account(account_id)
        entries = self.storage.find_entries(account_id=account_id)
        return ReconciliationReport(
            account_id=account_id,
            stored_balance=account.balance,
            ledger_balance=sum((e.amount for e in entries), ZERO),
            total_entries=len(entries),
        )

    def _period_totals(
        self, kind: EntryKind, start: date, end: date, account_id: Optional[UUID]
    ) -> PeriodTotals:
        entries = self.storage.find_entries(account_id=account_id, kind=kind, start=start, end=end)
        return PeriodTotals(
            kind=kind,
            start=start,
            end=end,
            account_id=account_id,
            total_amount=sum((abs(e.amount) for e in entries), ZERO),
            count=len(entries),
        )

    def _require_account(self, account_id: UUID):
        account = self.storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account
