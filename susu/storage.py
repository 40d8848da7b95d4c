"""Account ledger storage.

Every mutation of an account's ``(balance, rate, cumulative)`` happens inside
``Storage.account_scope``: reads are taken inside the scope, writes are staged
on an ``AccountTransaction`` and applied only if the block exits cleanly. Two
scopes on the same account never interleave; scopes on different accounts do
not wait for each other (in memory) or are serialized by SQLite's write lock.
"""

from __future__ import annotations

import itertools
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional
from uuid import UUID, uuid4

from susu.config import account_log_context, get_logger
from susu.config.settings import Settings
from susu.errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientBalanceError,
    StorageFailureError,
)
from susu.models import Account, CycleState, EntryKind, LedgerEntry
from susu.money import from_minor_units, to_minor_units, to_money

logger = get_logger(__name__)


class AccountTransaction:
    """Staged changes to a single account.

    Balance only moves through ``append_entry`` so the ledger sum and the
    stored balance cannot diverge.
    """

    def __init__(
        self,
        account: Account,
        cycle: CycleState,
        next_sequence: Callable[[], int],
    ) -> None:
        self.account = account
        self.cycle = cycle
        self.balance = account.balance
        self.rate = account.rate
        self.cumulative = cycle.cumulative
        self.cycle_touched = False
        self.new_entries: list[LedgerEntry] = []
        self._next_sequence = next_sequence

    @property
    def account_id(self) -> UUID:
        return self.account.id

    def append_entry(
        self,
        kind: EntryKind,
        amount: Decimal,
        occurred_on: date,
        related_entry_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> LedgerEntry:
        amount = to_money(amount)
        new_balance = self.balance + amount
        if new_balance < 0:
            raise InsufficientBalanceError(required=-amount, available=self.balance)

        entry = LedgerEntry(
            id=uuid4(),
            account_id=self.account_id,
            kind=kind,
            amount=amount,
            balance_after=new_balance,
            occurred_on=occurred_on,
            related_entry_id=related_entry_id,
            sequence=self._next_sequence(),
            created_at=datetime.now(timezone.utc),
            notes=notes,
            metadata=metadata or {},
        )
        self.balance = new_balance
        self.new_entries.append(entry)
        return entry

    def set_cumulative(self, value: Decimal) -> None:
        self.cumulative = to_money(value)
        self.cycle_touched = True

    def set_rate(self, rate: Decimal) -> None:
        self.rate = to_money(rate)


class Storage(ABC):
    @contextmanager
    def account_scope(self, account_id: UUID) -> Iterator[AccountTransaction]:
        with account_log_context(account_id), self._begin(account_id) as next_sequence:
            account = self.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            cycle = self.get_cycle(account_id) or CycleState(account_id=account_id)
            txn = AccountTransaction(account, cycle, next_sequence)
            yield txn
            self._apply(txn)

    def find_entries(
        self,
        account_id: Optional[UUID] = None,
        kind: Optional[EntryKind] = None,
        related_entry_id: Optional[UUID] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[LedgerEntry]:
        entries = [
            e for e in self._all_entries()
            if (account_id is None or e.account_id == account_id)
            and (kind is None or e.kind == kind)
            and (related_entry_id is None or e.related_entry_id == related_entry_id)
            and (start is None or e.occurred_on >= start)
            and (end is None or e.occurred_on <= end)
        ]
        entries.sort(key=lambda e: e.ordering_key)
        return entries

    @abstractmethod
    def add_account(self, account: Account) -> Account: ...

    @abstractmethod
    def get_account(self, account_id: UUID) -> Optional[Account]: ...

    @abstractmethod
    def list_accounts(self) -> list[Account]: ...

    @abstractmethod
    def get_cycle(self, account_id: UUID) -> Optional[CycleState]: ...

    @abstractmethod
    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]: ...

    @abstractmethod
    def _all_entries(self) -> list[LedgerEntry]: ...

    @abstractmethod
    def _begin(self, account_id: UUID):
        """Context manager holding the account's write scope; yields a sequence allocator."""

    @abstractmethod
    def _apply(self, txn: AccountTransaction) -> None: ...


class InMemoryStorage(Storage):
    def __init__(self):
        self.accounts: dict[UUID, dict] = {}
        self.cycles: dict[UUID, dict] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()
        self._account_locks: dict[UUID, threading.Lock] = {}

    def add_account(self, account: Account) -> Account:
        with self._lock:
            if account.id in self.accounts:
                raise DuplicateAccountError(f"Account {account.id} already exists")
            self.accounts[account.id] = account.model_dump()
        return account

    def get_account(self, account_id: UUID) -> Optional[Account]:
        with self._lock:
            data = self.accounts.get(account_id)
            return Account(**data) if data else None

    def list_accounts(self) -> list[Account]:
        with self._lock:
            return [Account(**a) for a in self.accounts.values()]

    def get_cycle(self, account_id: UUID) -> Optional[CycleState]:
        with self._lock:
            data = self.cycles.get(account_id)
            return CycleState(**data) if data else None

    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        with self._lock:
            data = self.ledger_entries.get(entry_id)
            return LedgerEntry(**data) if data else None

    def _all_entries(self) -> list[LedgerEntry]:
        with self._lock:
            return [LedgerEntry(**e) for e in self.ledger_entries.values()]

    def _allocate_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    @contextmanager
    def _begin(self, account_id: UUID):
        with self._lock:
            account_lock = self._account_locks.setdefault(account_id, threading.Lock())
        with account_lock:
            yield self._allocate_sequence

    def _apply(self, txn: AccountTransaction) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            account_data = self.accounts[txn.account_id]
            account_data["balance"] = txn.balance
            account_data["rate"] = txn.rate
            for entry in txn.new_entries:
                self.ledger_entries[entry.id] = entry.model_dump()
            if txn.cycle_touched or txn.account_id not in self.cycles:
                self.cycles[txn.account_id] = {
                    "account_id": txn.account_id,
                    "cumulative": txn.cumulative,
                    "updated_at": now if txn.cycle_touched else txn.cycle.updated_at,
                }


_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
  id              TEXT PRIMARY KEY,
  name            TEXT,
  rate_minor      INTEGER NOT NULL CHECK (rate_minor > 0),
  balance_minor   INTEGER NOT NULL CHECK (balance_minor >= 0),
  created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS commission_cycles (
  account_id        TEXT PRIMARY KEY,
  cumulative_minor  INTEGER NOT NULL DEFAULT 0,
  updated_at        TEXT,
  FOREIGN KEY(account_id) REFERENCES accounts(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS ledger_entries (
  id                   TEXT PRIMARY KEY,
  account_id           TEXT NOT NULL,
  kind                 TEXT NOT NULL,
  amount_minor         INTEGER NOT NULL,
  balance_after_minor  INTEGER NOT NULL,
  occurred_on          TEXT NOT NULL,
  related_entry_id     TEXT,
  sequence             INTEGER NOT NULL UNIQUE,
  created_at           TEXT NOT NULL,
  notes                TEXT,
  metadata_json        TEXT NOT NULL,
  FOREIGN KEY(account_id) REFERENCES accounts(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_entries_account_order ON ledger_entries(account_id, occurred_on, sequence);
CREATE INDEX IF NOT EXISTS idx_entries_related ON ledger_entries(related_entry_id);
"""

_ENTRY_COLUMNS = (
    "id, account_id, kind, amount_minor, balance_after_minor, occurred_on, "
    "related_entry_id, sequence, created_at, notes, metadata_json"
)


class SQLiteStorage(Storage):
    """Durable single-file ledger.

    One connection per thread. Write scopes run under ``BEGIN IMMEDIATE`` and
    are rolled back on any failure; money is stored as integer minor units.
    """

    def __init__(self, path: str = "susu_ledger.db"):
        self._path = path
        self._local = threading.local()
        self._migrate()

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=30.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute("PRAGMA busy_timeout=30000")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            raise StorageFailureError(f"Cannot open ledger database {self._path}: {exc}") from exc
        self._local.conn = conn
        return conn

    def _migrate(self) -> None:
        conn = self._get_conn()
        try:
            if conn.execute("PRAGMA user_version").fetchone()[0] == 0:
                conn.executescript(_SCHEMA)
                conn.execute("PRAGMA user_version=1")
        except sqlite3.Error as exc:
            raise StorageFailureError(f"Ledger schema migration failed: {exc}") from exc

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self._get_conn().execute(sql, params).fetchall()
        except (sqlite3.Error, OverflowError) as exc:
            logger.error("storage_failure", operation="query", error=str(exc))
            raise StorageFailureError(str(exc)) from exc

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ----- row mapping -----

    @staticmethod
    def _row_to_account(row) -> Account:
        account_id, name, rate_minor, balance_minor, created_at = row
        return Account(
            id=UUID(account_id),
            name=name,
            rate=from_minor_units(rate_minor),
            balance=from_minor_units(balance_minor),
            created_at=datetime.fromisoformat(created_at),
        )

    @staticmethod
    def _row_to_entry(row) -> LedgerEntry:
        (
            entry_id,
            account_id,
            kind,
            amount_minor,
            balance_after_minor,
            occurred_on,
            related_entry_id,
            sequence,
            created_at,
            notes,
            metadata_json,
        ) = row
        return LedgerEntry(
            id=UUID(entry_id),
            account_id=UUID(account_id),
            kind=EntryKind(kind),
            amount=from_minor_units(amount_minor),
            balance_after=from_minor_units(balance_after_minor),
            occurred_on=date.fromisoformat(occurred_on),
            related_entry_id=UUID(related_entry_id) if related_entry_id else None,
            sequence=sequence,
            created_at=datetime.fromisoformat(created_at),
            notes=notes,
            metadata=json.loads(metadata_json) if metadata_json else {},
        )

    # ----- reads -----

    def add_account(self, account: Account) -> Account:
        try:
            self._get_conn().execute(
                "INSERT INTO accounts (id, name, rate_minor, balance_minor, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    str(account.id),
                    account.name,
                    to_minor_units(account.rate),
                    to_minor_units(account.balance),
                    account.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateAccountError(f"Account {account.id} already exists") from exc
        except (sqlite3.Error, OverflowError) as exc:
            logger.error("storage_failure", operation="add_account", error=str(exc))
            raise StorageFailureError(str(exc)) from exc
        return account

    def get_account(self, account_id: UUID) -> Optional[Account]:
        rows = self._query(
            "SELECT id, name, rate_minor, balance_minor, created_at FROM accounts WHERE id = ?",
            (str(account_id),),
        )
        return self._row_to_account(rows[0]) if rows else None

    def list_accounts(self) -> list[Account]:
        rows = self._query("SELECT id, name, rate_minor, balance_minor, created_at FROM accounts")
        return [self._row_to_account(r) for r in rows]

    def get_cycle(self, account_id: UUID) -> Optional[CycleState]:
        rows = self._query(
            "SELECT cumulative_minor, updated_at FROM commission_cycles WHERE account_id = ?",
            (str(account_id),),
        )
        if not rows:
            return None
        cumulative_minor, updated_at = rows[0]
        return CycleState(
            account_id=account_id,
            cumulative=from_minor_units(cumulative_minor),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )

    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        rows = self._query(
            f"SELECT {_ENTRY_COLUMNS} FROM ledger_entries WHERE id = ?", (str(entry_id),)
        )
        return self._row_to_entry(rows[0]) if rows else None

    def find_entries(
        self,
        account_id: Optional[UUID] = None,
        kind: Optional[EntryKind] = None,
        related_entry_id: Optional[UUID] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[LedgerEntry]:
        clauses, params = [], []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(str(account_id))
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if related_entry_id is not None:
            clauses.append("related_entry_id = ?")
            params.append(str(related_entry_id))
        if start is not None:
            clauses.append("occurred_on >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("occurred_on <= ?")
            params.append(end.isoformat())
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(
            f"SELECT {_ENTRY_COLUMNS} FROM ledger_entries{where} ORDER BY occurred_on, sequence",
            tuple(params),
        )
        return [self._row_to_entry(r) for r in rows]

    def _all_entries(self) -> list[LedgerEntry]:
        return self.find_entries()

    # ----- writes -----

    @contextmanager
    def _begin(self, account_id: UUID):
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            base = conn.execute("SELECT COALESCE(MAX(sequence), 0) FROM ledger_entries").fetchone()[0]
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("storage_failure", operation="begin", account_id=str(account_id), error=str(exc))
            raise StorageFailureError(str(exc)) from exc

        sequence = itertools.count(base + 1)
        try:
            yield lambda: next(sequence)
            conn.execute("COMMIT")
        except (sqlite3.Error, OverflowError) as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("storage_failure", operation="commit", account_id=str(account_id), error=str(exc))
            raise StorageFailureError(str(exc)) from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _apply(self, txn: AccountTransaction) -> None:
        conn = self._get_conn()
        conn.execute(
            "UPDATE accounts SET rate_minor = ?, balance_minor = ? WHERE id = ?",
            (to_minor_units(txn.rate), to_minor_units(txn.balance), str(txn.account_id)),
        )
        conn.executemany(
            f"INSERT INTO ledger_entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    str(e.id),
                    str(e.account_id),
                    e.kind.value,
                    to_minor_units(e.amount),
                    to_minor_units(e.balance_after),
                    e.occurred_on.isoformat(),
                    str(e.related_entry_id) if e.related_entry_id else None,
                    e.sequence,
                    e.created_at.isoformat(),
                    e.notes,
                    json.dumps(e.metadata),
                )
                for e in txn.new_entries
            ],
        )
        if txn.cycle_touched:
            conn.execute(
                """INSERT INTO commission_cycles (account_id, cumulative_minor, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE SET
                      cumulative_minor = excluded.cumulative_minor,
                      updated_at = excluded.updated_at""",
                (
                    str(txn.account_id),
                    to_minor_units(txn.cumulative),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
        else:
            conn.execute(
                "INSERT OR IGNORE INTO commission_cycles (account_id, cumulative_minor) VALUES (?, ?)",
                (str(txn.account_id), to_minor_units(txn.cumulative)),
            )


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "sqlite":
        return SQLiteStorage(settings.sqlite_path)
    return InMemoryStorage()


__all__ = [
    "AccountTransaction",
    "Storage",
    "InMemoryStorage",
    "SQLiteStorage",
    "build_storage",
]
