"""Page arithmetic for the commission cycle.

A client's withdrawals fill "pages" of 31 boxes. Every completed page costs
the client one box (``rate``) of commission. A withdrawal that leaves the
account at or below one box ("full withdrawal") settles the open page too:
the client receives the whole requested amount and the box is taken from
what remains in the account.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from susu.config import get_logger
from susu.models import FullWithdrawalPolicy
from susu.money import ZERO, page_threshold, to_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class PageSplit:
    requested: Decimal
    client_gets: Decimal
    commission: Decimal
    cumulative_before: Decimal
    cumulative_after: Decimal
    pages_completed: int
    full_withdrawal: bool
    forced_settlement: bool
    threshold: Decimal

    @property
    def total_deduction(self) -> Decimal:
        return self.client_gets + self.commission


def normalize_cumulative(account_id: UUID, cumulative: Decimal, threshold: Decimal) -> Decimal:
    """Fold a drifted cumulative back into ``[0, threshold)``.

    A stored value at or above one page never occurs in a correct run; it is
    reduced modulo the threshold and reported rather than rejected.
    """
    if threshold > 0 and cumulative >= threshold:
        normalized = to_money(cumulative % threshold)
        logger.warning(
            "cycle_state_normalized",
            account_id=str(account_id),
            stored_cumulative=str(cumulative),
            threshold=str(threshold),
            normalized_cumulative=str(normalized),
        )
        return normalized
    return cumulative


def split_withdrawal(
    requested: Decimal,
    rate: Decimal,
    cumulative: Decimal,
    starting_balance: Decimal,
    policy: FullWithdrawalPolicy = FullWithdrawalPolicy.INCLUSIVE,
) -> PageSplit:
    """Walk ``requested`` through the open page and any pages after it.

    ``cumulative`` must already lie in ``[0, threshold)`` and ``rate`` must be
    positive. The full-withdrawal check is made once, against
    ``starting_balance``, and holds for every page of this withdrawal.
    """
    threshold = page_threshold(rate)
    full_withdrawal = policy.is_full(starting_balance - requested, rate)

    remaining = requested
    page = cumulative
    commission = ZERO
    client_gets = ZERO
    pages_completed = 0
    forced = False

    needed = threshold - page
    if remaining >= needed:
        # The open page completes first, then every further page starts empty.
        extra_pages, remaining = divmod(remaining - needed, threshold)
        pages_completed = 1 + int(extra_pages)
        commission = rate * pages_completed
        client_gets = page + (needed - rate) + (threshold - rate) * extra_pages
        page = ZERO

    if remaining > 0:
        if full_withdrawal:
            commission += rate
            client_gets += page + remaining
            forced = True
        else:
            client_gets += remaining
            page += remaining

    if full_withdrawal:
        page = ZERO

    return PageSplit(
        requested=requested,
        client_gets=to_money(client_gets),
        commission=to_money(commission),
        cumulative_before=cumulative,
        cumulative_after=to_money(page),
        pages_completed=pages_completed,
        full_withdrawal=full_withdrawal,
        forced_settlement=forced,
        threshold=threshold,
    )
