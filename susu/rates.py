from decimal import Decimal
from uuid import UUID

from susu.config import get_logger
from susu.errors import InvalidAmountError, InvalidRateError
from susu.models import RateChangeResult
from susu.money import MoneyLike, to_money
from susu.storage import Storage

logger = get_logger(__name__)


class RateChangeAdjuster:
    """Applies a new box value to an account.

    Lowering the rate while the open page already holds at least one box at
    the new rate settles that box straight out of the cumulative.
    """

    def __init__(self, storage: Storage, min_rate: Decimal = Decimal("0.01")):
        self.storage = storage
        self.min_rate = min_rate

    def update_rate(self, account_id: UUID, new_rate: MoneyLike) -> RateChangeResult:
        try:
            rate = to_money(new_rate)
        except InvalidAmountError as exc:
            raise InvalidRateError(f"Invalid rate: {new_rate!r}") from exc
        if rate <= 0:
            raise InvalidRateError("Rate must be greater than 0")
        if rate < self.min_rate:
            raise InvalidRateError(f"Rate must be at least {self.min_rate}")

        with self.storage.account_scope(account_id) as txn:
            old_rate = txn.rate
            cumulative = txn.cumulative
            adjusted = False
            if rate < old_rate and cumulative >= rate:
                cumulative = cumulative - rate
                txn.set_cumulative(cumulative)
                adjusted = True
            txn.set_rate(rate)

        logger.info(
            "rate_updated",
            account_id=str(account_id),
            old_rate=str(old_rate),
            new_rate=str(rate),
            cumulative_adjusted=adjusted,
            cumulative=str(cumulative),
        )
        return RateChangeResult(
            account_id=account_id,
            old_rate=old_rate,
            new_rate=rate,
            cumulative_adjusted=adjusted,
            cumulative=cumulative,
        )
