from decimal import Decimal
from uuid import UUID


class SusuLedgerError(Exception):
    pass


class AccountNotFoundError(SusuLedgerError):
    def __init__(self, account_id: UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class InvalidRateError(SusuLedgerError):
    pass


class InvalidAmountError(SusuLedgerError):
    pass


class InsufficientBalanceError(SusuLedgerError):
    def __init__(self, required: Decimal, available: Decimal, commission: Decimal = Decimal("0.00")):
        self.required = required
        self.available = available
        self.commission = commission
        self.shortfall = required - available
        if commission > 0:
            message = (
                f"Insufficient balance. Withdrawal plus commission of {commission} requires "
                f"{required} total, but balance is only {available}. Shortfall: {self.shortfall}."
            )
        else:
            message = (
                f"Insufficient balance. Withdrawal of {required} exceeds available "
                f"balance of {available}."
            )
        super().__init__(message)


class ReversalTargetNotFoundError(SusuLedgerError):
    pass


class AlreadyReversedError(SusuLedgerError):
    pass


class StorageFailureError(SusuLedgerError):
    """Raised when the backing store fails mid-transaction; safe to retry."""

    retryable = True


class DuplicateAccountError(SusuLedgerError):
    pass
