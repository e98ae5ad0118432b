"""Services package."""

from household_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    LedgerDatabase,
    NotFoundError,
    SqlAuditStorage,
    SqlTransactionStore,
    StoreError,
    TransactionStoreInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "LedgerDatabase",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlTransactionStore",
    "StoreError",
    "TransactionStoreInterface",
]
