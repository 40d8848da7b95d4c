"""Withdrawal processing: the commission split applied to a stored account."""

from datetime import date
from typing import Optional
from uuid import UUID

from susu.config import get_logger
from susu.errors import InsufficientBalanceError, InvalidRateError
from susu.models import (
    EntryKind,
    FullWithdrawalPolicy,
    WithdrawalResult,
    WithdrawalTotals,
)
from susu.money import MoneyLike, page_threshold, to_amount
from susu.pages import PageSplit, normalize_cumulative, split_withdrawal
from susu.storage import Storage

logger = get_logger(__name__)


def _commission_note(split: PageSplit) -> str:
    if split.forced_settlement:
        return "Auto commission (31st box) - deducted due to full withdrawal"
    pages = "page" if split.pages_completed == 1 else "pages"
    return (
        f"Auto commission (31st box) - {split.pages_completed} full {pages} completed "
        f"(threshold: {split.threshold} = 31 boxes per page)"
    )


class WithdrawalProcessor:
    def __init__(
        self,
        storage: Storage,
        policy: FullWithdrawalPolicy = FullWithdrawalPolicy.INCLUSIVE,
    ):
        self.storage = storage
        self.policy = policy

    def process_withdrawal(
        self,
        account_id: UUID,
        amount: MoneyLike,
        occurred_on: date,
        notes: Optional[str] = None,
    ) -> WithdrawalResult:
        requested = to_amount(amount, "Withdrawal amount")

        with self.storage.account_scope(account_id) as txn:
            rate = txn.rate
            if rate <= 0:
                raise InvalidRateError(f"Account {account_id} has a non-positive rate ({rate})")

            starting_balance = txn.balance
            # The deduction is never less than the request.
            if requested > starting_balance:
                logger.info(
                    "withdrawal_rejected",
                    account_id=str(account_id),
                    required=str(requested),
                    available=str(starting_balance),
                )
                raise InsufficientBalanceError(required=requested, available=starting_balance)

            threshold = page_threshold(rate)
            cumulative = normalize_cumulative(account_id, txn.cumulative, threshold)

            split = split_withdrawal(requested, rate, cumulative, starting_balance, self.policy)
            logger.info(
                "commission_computed",
                account_id=str(account_id),
                requested=str(requested),
                client_gets=str(split.client_gets),
                commission=str(split.commission),
                pages_completed=split.pages_completed,
                cumulative_before=str(split.cumulative_before),
                cumulative_after=str(split.cumulative_after),
                full_withdrawal=split.full_withdrawal,
                threshold=str(threshold),
            )

            if starting_balance < split.total_deduction:
                logger.info(
                    "withdrawal_rejected",
                    account_id=str(account_id),
                    required=str(split.total_deduction),
                    available=str(starting_balance),
                )
                raise InsufficientBalanceError(
                    required=split.total_deduction,
                    available=starting_balance,
                    commission=split.commission,
                )

            withdrawal_entry = txn.append_entry(
                EntryKind.WITHDRAWAL,
                -split.client_gets,
                occurred_on,
                notes=notes,
                metadata={
                    "requested_amount": str(requested),
                    "cumulative_before": str(split.cumulative_before),
                    "cumulative_after": str(split.cumulative_after),
                    "pages_completed": split.pages_completed,
                    "full_withdrawal": split.full_withdrawal,
                    "threshold": str(threshold),
                },
            )
            commission_entry = None
            if split.commission > 0:
                commission_entry = txn.append_entry(
                    EntryKind.COMMISSION,
                    -split.commission,
                    occurred_on,
                    related_entry_id=withdrawal_entry.id,
                    notes=_commission_note(split),
                )
            txn.set_cumulative(split.cumulative_after)

        logger.info(
            "withdrawal_processed",
            account_id=str(account_id),
            withdrawal_entry_id=str(withdrawal_entry.id),
            balance_after=str(txn.balance),
        )
        return WithdrawalResult(
            withdrawal_entry=withdrawal_entry,
            commission_entry=commission_entry,
            totals=WithdrawalTotals(
                requested=requested,
                client_gets=split.client_gets,
                commission=split.commission,
                total_deduction=split.total_deduction,
                pages_completed=split.pages_completed,
                full_withdrawal=split.full_withdrawal,
                balance_before=starting_balance,
                balance_after=txn.balance,
                cumulative_before=split.cumulative_before,
                cumulative_after=split.cumulative_after,
                threshold=threshold,
            ),
        )
