"""Reversal of processed withdrawals.

Balance restoration is exact: the withdrawal and its commission are booked
back as compensating entries. The page cumulative is only estimated, since
the value it held before the withdrawal is not part of the ledger's
arithmetic; see ``estimate_prior_cumulative``.
"""

from decimal import Decimal
from uuid import UUID

from susu.config import get_logger
from susu.errors import AlreadyReversedError, ReversalTargetNotFoundError
from susu.models import EntryKind, ReversalResult
from susu.money import ZERO, page_threshold, to_money
from susu.storage import Storage

logger = get_logger(__name__)


def estimate_prior_cumulative(
    current_cumulative: Decimal,
    withdrawn: Decimal,
    commission: Decimal,
    rate: Decimal,
) -> Decimal:
    """Best-effort cumulative before a withdrawal of ``withdrawn`` + ``commission``.

    With a commission, the gross amount is taken off the current cumulative and
    one page is added back per commission box until the value is no longer
    negative. Without one, the payout is simply subtracted. Never negative.
    """
    if commission > 0 and rate > 0:
        threshold = page_threshold(rate)
        pages_completed = int(commission // rate)
        estimate = current_cumulative - (withdrawn + commission)
        while estimate < 0 and pages_completed > 0:
            estimate += threshold
            pages_completed -= 1
        return to_money(max(ZERO, estimate))
    return to_money(max(ZERO, current_cumulative - withdrawn))


class ReversalEngine:
    def __init__(self, storage: Storage):
        self.storage = storage

    def reverse_withdrawal(self, withdrawal_entry_id: UUID, reason: str) -> ReversalResult:
        withdrawal = self.storage.get_entry(withdrawal_entry_id)
        if withdrawal is None or withdrawal.kind != EntryKind.WITHDRAWAL:
            raise ReversalTargetNotFoundError(f"Withdrawal {withdrawal_entry_id} not found")

        with self.storage.account_scope(withdrawal.account_id) as txn:
            already = self.storage.find_entries(
                account_id=withdrawal.account_id,
                kind=EntryKind.REVERSAL,
                related_entry_id=withdrawal.id,
            )
            if already:
                raise AlreadyReversedError(f"Withdrawal {withdrawal.id} has already been reversed")

            commissions = self.storage.find_entries(
                account_id=withdrawal.account_id,
                kind=EntryKind.COMMISSION,
                related_entry_id=withdrawal.id,
            )
            commission = commissions[0] if commissions else None

            withdrawn = abs(withdrawal.amount)
            commission_amount = abs(commission.amount) if commission else ZERO
            cumulative_before = txn.cumulative
            restored_cumulative = estimate_prior_cumulative(
                cumulative_before, withdrawn, commission_amount, txn.rate
            )

            reversal_entry = txn.append_entry(
                EntryKind.REVERSAL,
                withdrawn,
                withdrawal.occurred_on,
                related_entry_id=withdrawal.id,
                notes=f"Reversal of withdrawal {withdrawal.id}. {reason or 'Transaction reversed'}",
                metadata={"reason": reason, "reversed_kind": EntryKind.WITHDRAWAL.value},
            )
            commission_reversal_entry = None
            if commission is not None and commission_amount > 0:
                commission_reversal_entry = txn.append_entry(
                    EntryKind.REVERSAL,
                    commission_amount,
                    withdrawal.occurred_on,
                    related_entry_id=commission.id,
                    notes=f"Reversal of commission {commission.id} (related to withdrawal {withdrawal.id})",
                    metadata={"reason": reason, "reversed_kind": EntryKind.COMMISSION.value},
                )
            txn.set_cumulative(restored_cumulative)

        logger.info(
            "withdrawal_reversed",
            account_id=str(withdrawal.account_id),
            withdrawal_entry_id=str(withdrawal.id),
            restored_amount=str(withdrawn + commission_amount),
            cumulative_before=str(cumulative_before),
            restored_cumulative=str(restored_cumulative),
            reason=reason,
        )
        return ReversalResult(
            reversal_entry=reversal_entry,
            commission_reversal_entry=commission_reversal_entry,
            restored_balance=txn.balance,
            restored_cumulative=restored_cumulative,
        )
