"""
Keyed state store with per-key locking.

Every entity lives in a named table under its unique key. Mutations happen
inside a ``Transaction`` that declares up front which keys it may write; the
store acquires those key locks in a canonical order (so two transactions
never deadlock), stages writes, and applies them only if the block exits
normally. An exception anywhere in the block discards every staged write.

Records are expected to be immutable (frozen dataclasses) and a commit
replaces whole records, so plain reads take no lock and never observe a
half-written record.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ..errors import LockTimeoutError, StorageError
from ..logging import get_logger

logger = get_logger(__name__)


class Table(Enum):
    """Logical tables of the persisted state."""

    MERCHANTS = "merchants"
    PROGRAMS = "programs"
    VERIFICATION_KEYS = "verification_keys"
    COUPONS = "coupons"
    ISSUANCES = "issuances"
    WALLETS = "wallets"
    IDENTITIES = "identities"
    TOKENS = "tokens"


Key = Tuple[Table, str]

_DELETED = object()


class TransactionStatus(Enum):
    """Transaction status."""

    ACTIVE = "active"
    COMMITTED = "committed"
    ABORTED = "aborted"


class _KeyLock:
    """A key's lock plus the number of threads holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


LockHandle = Tuple[Key, _KeyLock]


class KeyLockManager:
    """Arena of per-key locks.

    An entry exists only while some thread holds or waits for its key, so
    the arena stays as small as the set of keys currently in use.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: Dict[Key, _KeyLock] = {}
        self._mutex = threading.Lock()

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)

    def _checkout(self, key: Key) -> _KeyLock:
        with self._mutex:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Key, entry: _KeyLock) -> None:
        with self._mutex:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def acquire_all(self, keys: Iterable[Key]) -> List[LockHandle]:
        """Acquire locks for ``keys`` in sorted order; all or nothing."""
        ordered = sorted(set(keys), key=lambda k: (k[0].value, k[1]))
        acquired: List[LockHandle] = []
        for key in ordered:
            entry = self._checkout(key)
            if not entry.lock.acquire(timeout=self.timeout):
                self._checkin(key, entry)
                self.release_all(acquired)
                raise LockTimeoutError(
                    f"Timed out waiting for lock on {key[0].value}/{key[1]}",
                    table=key[0].value,
                    key=key[1],
                )
            acquired.append((key, entry))
        return acquired

    def release_all(self, handles: List[LockHandle]) -> None:
        for key, entry in reversed(handles):
            entry.lock.release()
            self._checkin(key, entry)

    @contextmanager
    def holding(self, keys: Iterable[Key]) -> Iterator[None]:
        locks = self.acquire_all(keys)
        try:
            yield
        finally:
            self.release_all(locks)


@dataclass
class Transaction:
    """A unit of work scoped to a fixed set of keys."""

    store: "StateStore"
    keys: Set[Key]
    transaction_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TransactionStatus = TransactionStatus.ACTIVE
    started_at: float = field(default_factory=time.time)
    write_set: Dict[Key, Any] = field(default_factory=dict)

    def get(self, table: Table, key: str) -> Any:
        """Read a record, seeing this transaction's own staged writes."""
        staged = self.write_set.get((table, key))
        if staged is _DELETED:
            return None
        if staged is not None:
            return staged
        return self.store._rows[table].get(key)

    def exists(self, table: Table, key: str) -> bool:
        return self.get(table, key) is not None

    def put(self, table: Table, key: str, record: Any) -> None:
        """Stage an insert or replacement."""
        self._check_writable(table, key)
        if record is None:
            raise StorageError("Cannot store None", table=table.value, key=key)
        self.write_set[(table, key)] = record

    def insert(self, table: Table, key: str, record: Any) -> None:
        """Stage an insert; fails if the key already holds a record."""
        if self.exists(table, key):
            raise StorageError(
                f"Duplicate key {table.value}/{key}", table=table.value, key=key
            )
        self.put(table, key, record)

    def delete(self, table: Table, key: str) -> None:
        """Stage a delete."""
        self._check_writable(table, key)
        self.write_set[(table, key)] = _DELETED

    def _check_writable(self, table: Table, key: str) -> None:
        if self.status != TransactionStatus.ACTIVE:
            raise StorageError(
                f"Transaction {self.transaction_id} is {self.status.value}",
                table=table.value,
                key=key,
            )
        if (table, key) not in self.keys:
            raise StorageError(
                f"Key {table.value}/{key} is not locked by this transaction",
                table=table.value,
                key=key,
            )


class StateStore:
    """In-memory implementation of the keyed tables."""

    def __init__(self, lock_timeout: float = 10.0):
        self._rows: Dict[Table, Dict[str, Any]] = {table: {} for table in Table}
        self._locks = KeyLockManager(lock_timeout)
        self._stats = {"committed": 0, "aborted": 0}
        self._stats_lock = threading.Lock()

    @contextmanager
    def transaction(self, keys: Iterable[Key]) -> Iterator[Transaction]:
        """Run a block atomically over ``keys``."""
        key_set = set(keys)
        txn = Transaction(store=self, keys=key_set)
        with self._locks.holding(key_set):
            try:
                yield txn
            except BaseException:
                txn.status = TransactionStatus.ABORTED
                txn.write_set.clear()
                self._count("aborted")
                raise
            self._apply(txn)
        logger.trace(
            "Committed transaction",
            extra={"transaction_id": txn.transaction_id, "writes": len(txn.write_set)},
        )

    def _apply(self, txn: Transaction) -> None:
        for (table, key), record in txn.write_set.items():
            if record is _DELETED:
                self._rows[table].pop(key, None)
            else:
                self._rows[table][key] = record
        txn.status = TransactionStatus.COMMITTED
        self._count("committed")

    def _count(self, outcome: str) -> None:
        with self._stats_lock:
            self._stats[outcome] += 1

    def get(self, table: Table, key: str) -> Any:
        """Read the committed record for a key, or None. Takes no lock."""
        return self._rows[table].get(key)

    def scan(
        self, table: Table, predicate: Optional[Callable[[Any], bool]] = None
    ) -> List[Any]:
        """Committed records of a table matching ``predicate``."""
        # dict.copy is atomic under the GIL and records are immutable
        rows = list(self._rows[table].copy().values())
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    def count(self, table: Table, predicate: Optional[Callable[[Any], bool]] = None) -> int:
        return len(self.scan(table, predicate))

    def get_stats(self) -> Dict[str, int]:
        """Row counts per table and transaction outcomes."""
        with self._stats_lock:
            stats = dict(self._stats)
        for table in Table:
            stats[table.value] = len(self._rows[table])
        stats["locks"] = len(self._locks)
        return stats
