"""
Transaction Store Client Library

Idempotent PostgreSQL persistence for transactions: every write is an
insert that ignores id conflicts and reports how many rows were new.

Usage:
    from txn_store import TransactionStore, Transaction

    store = TransactionStore({"dsn": "postgresql://..."})
    inserted = store.apply_batch([Transaction(...)])
"""

from .client import TransactionStore
from .errors import (
    StoreError,
    RetryableStoreError,
    ConstraintViolation,
    StoreTimeout,
    map_db_error,
)
from .models import Transaction, TRANSACTION_FIELDS

__version__ = "1.0.0"
__all__ = [
    "TransactionStore",
    "Transaction",
    "TRANSACTION_FIELDS",
    "StoreError",
    "RetryableStoreError",
    "ConstraintViolation",
    "StoreTimeout",
    "map_db_error",
]
