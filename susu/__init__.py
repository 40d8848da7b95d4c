"""
Susu Commission Ledger

This package provides:
- Append-only ledger entries for deposits, withdrawals, commissions and reversals
- Page-based commission: one box of commission per 31 boxes withdrawn
- Full-withdrawal settlement of an incomplete page
- Exact balance restoration on reversal, best-effort page progress restoration
- Rate changes with mid-cycle settlement
- Serialized per-account transactions over in-memory or SQLite storage
"""

from .models import (
    EntryKind,
    FullWithdrawalPolicy,
    Account,
    LedgerEntry,
    CycleState,
    CycleStatus,
)
from .errors import (
    SusuLedgerError,
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidRateError,
    InvalidAmountError,
    ReversalTargetNotFoundError,
    AlreadyReversedError,
    StorageFailureError,
    DuplicateAccountError,
)
from .storage import InMemoryStorage, SQLiteStorage
from .service import SusuLedgerService

__all__ = [
    "EntryKind",
    "FullWithdrawalPolicy",
    "Account",
    "LedgerEntry",
    "CycleState",
    "CycleStatus",
    "SusuLedgerError",
    "AccountNotFoundError",
    "InsufficientBalanceError",
    "InvalidRateError",
    "InvalidAmountError",
    "ReversalTargetNotFoundError",
    "AlreadyReversedError",
    "StorageFailureError",
    "DuplicateAccountError",
    "InMemoryStorage",
    "SQLiteStorage",
    "SusuLedgerService",
]
