"""zkcoupon storage.

Keyed tables with per-key locks and all-or-nothing transactions. Only the
logical records and their invariants are fixed; this in-memory store is the
reference engine.
"""

from .store import KeyLockManager, StateStore, Table, Transaction, TransactionStatus

__all__ = [
    "StateStore",
    "Table",
    "Transaction",
    "TransactionStatus",
    "KeyLockManager",
]
