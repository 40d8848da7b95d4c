"""Per-account page progress ("cumulative") toward the next commission box."""

from decimal import Decimal
from uuid import UUID

from susu.config import get_logger
from susu.errors import AccountNotFoundError
from susu.models import (
    CycleRebuildResult,
    CycleState,
    CycleStatus,
    EntryKind,
    FullWithdrawalPolicy,
    LedgerEntry,
)
from susu.money import BOXES_PER_PAGE, ZERO, page_threshold, to_money
from susu.pages import normalize_cumulative, split_withdrawal
from susu.storage import Storage

logger = get_logger(__name__)


def _rate_at(entry: LedgerEntry, current_rate: Decimal) -> Decimal:
    threshold = entry.metadata.get("threshold")
    if threshold is None:
        return current_rate
    return to_money(Decimal(threshold) / BOXES_PER_PAGE)


class CommissionCycleTracker:
    def __init__(
        self,
        storage: Storage,
        policy: FullWithdrawalPolicy = FullWithdrawalPolicy.INCLUSIVE,
    ):
        self.storage = storage
        self.policy = policy

    def get(self, account_id: UUID) -> CycleStatus:
        account = self.storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        cycle = self.storage.get_cycle(account_id) or CycleState(account_id=account_id)

        threshold = page_threshold(account.rate)
        cumulative = normalize_cumulative(account_id, cycle.cumulative, threshold)
        return CycleStatus(
            account_id=account_id,
            cumulative=cumulative,
            threshold=threshold,
            remaining=threshold - cumulative,
            reached=cumulative >= threshold,
            rate=account.rate,
            balance=account.balance,
            updated_at=cycle.updated_at,
        )

    def reset(self, account_id: UUID) -> CycleStatus:
        with self.storage.account_scope(account_id) as txn:
            previous = txn.cumulative
            txn.set_cumulative(ZERO)
        logger.info("cycle_reset", account_id=str(account_id), previous_cumulative=str(previous))
        return self.get(account_id)

    def adjust(self, account_id: UUID, value: Decimal) -> CycleStatus:
        """Force-set the cumulative (administrative correction), clamped at zero."""
        cumulative = max(ZERO, to_money(value))

        with self.storage.account_scope(account_id) as txn:
            previous = txn.cumulative
            txn.set_cumulative(cumulative)
        logger.info(
            "cycle_adjusted",
            account_id=str(account_id),
            previous_cumulative=str(previous),
            cumulative=str(cumulative),
        )
        return self.get(account_id)

    def rebuild(self, account_id: UUID, dry_run: bool = False) -> CycleRebuildResult:
        """Recompute the cumulative by replaying the account's withdrawals.

        Withdrawals are replayed in ledger order, each at the rate recorded
        with it. Reversed withdrawals are skipped. Rate-change settlements and
        manual adjustments leave no ledger entry, so they show up as drift.
        Unless ``dry_run`` is set, the stored cumulative is replaced.
        """
        with self.storage.account_scope(account_id) as txn:
            entries = self.storage.find_entries(account_id=account_id)
            reversed_ids = {
                e.related_entry_id for e in entries
                if e.kind == EntryKind.REVERSAL and e.related_entry_id is not None
            }

            cumulative = ZERO
            replayed = 0
            skipped = 0
            for entry in entries:
                if entry.kind != EntryKind.WITHDRAWAL:
                    continue
                if entry.id in reversed_ids:
                    skipped += 1
                    continue
                rate = _rate_at(entry, txn.rate)
                if rate <= 0:
                    skipped += 1
                    continue
                requested = to_money(entry.metadata.get("requested_amount", abs(entry.amount)))
                starting_balance = entry.balance_after - entry.amount
                cumulative = normalize_cumulative(account_id, cumulative, page_threshold(rate))
                split = split_withdrawal(requested, rate, cumulative, starting_balance, self.policy)
                cumulative = split.cumulative_after
                replayed += 1

            stored = txn.cumulative
            drift = stored - cumulative
            if not dry_run:
                txn.set_cumulative(cumulative)

        if drift != 0:
            logger.warning(
                "cycle_drift_detected",
                account_id=str(account_id),
                stored_cumulative=str(stored),
                rebuilt_cumulative=str(cumulative),
                drift=str(drift),
            )
        logger.info(
            "cycle_rebuilt",
            account_id=str(account_id),
            withdrawals_replayed=replayed,
            withdrawals_skipped=skipped,
            cumulative=str(cumulative),
            dry_run=dry_run,
        )
        return CycleRebuildResult(
            account_id=account_id,
            stored_cumulative=stored,
            rebuilt_cumulative=cumulative,
            drift=drift,
            withdrawals_replayed=replayed,
            withdrawals_skipped=skipped,
            applied=not dry_run,
        )
