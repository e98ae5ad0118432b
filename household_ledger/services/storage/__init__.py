"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements a SQLAlchemy-backed relational store, but the ledger
logic only depends on the interfaces.
"""

from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    StoreError,
    TransactionStoreInterface,
)
from household_ledger.services.storage.database import LedgerDatabase
from household_ledger.services.storage.sql import (
    SqlAuditStorage,
    SqlTransactionStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "TransactionStoreInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StoreError",
    # SQL implementation
    "LedgerDatabase",
    "SqlAuditStorage",
    "SqlTransactionStore",
]
