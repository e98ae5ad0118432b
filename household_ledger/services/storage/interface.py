"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the balance arithmetic decoupled from the database
2. Swap SQLite for PostgreSQL without touching business logic
3. Give every read-modify-write sequence one explicit transaction boundary

The interface is intentionally small - we're not building a full ORM.
Just the operations the ledger needs.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Optional
from uuid import UUID

from household_ledger.models.audit import AuditEvent
from household_ledger.models.transaction import (
    AmountTotals,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
)


class TransactionStoreInterface(ABC):
    """
    Abstract interface for the transaction store.

    Any storage implementation must implement these methods.
    Query results are always ordered by (transaction_date, created_at,
    insertion order).
    """

    @abstractmethod
    async def insert(self, draft: TransactionDraft) -> UUID:
        """
        Store a new transaction.

        Returns:
            The id assigned to the new transaction

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def update(
        self,
        transaction_id: UUID,
        changes: TransactionUpdate,
    ) -> Transaction:
        """
        Apply the fields set on `changes` verbatim.

        Sign-class rules are the caller's business; the store writes
        exactly what it is given.

        Returns:
            The updated transaction

        Raises:
            NotFoundError: If the transaction doesn't exist
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if a row was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def query(
        self,
        group_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        before: Optional[date] = None,
        adjustments_only: bool = False,
    ) -> list[Transaction]:
        """
        List a group's transactions in ledger order.

        Args:
            group_id: Owning group
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
            before: Only transactions strictly before this date
            adjustments_only: Only synthetic adjustment entries, including
                legacy entries recognised by a reserved note
        """
        pass

    @abstractmethod
    async def delete_adjustments(self, group_id: str) -> int:
        """
        Delete every synthetic adjustment entry of a group.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def totals(
        self,
        group_id: str,
        before: Optional[date] = None,
        through: Optional[date] = None,
    ) -> AmountTotals:
        """
        Aggregate income and expense in the store.

        Args:
            before: Only transactions strictly before this date
            through: Only transactions on or before this date
        """
        pass

    @abstractmethod
    async def amount_sum(self, group_id: str) -> int:
        """
        Sum of all signed amounts of a group.

        The displayed balance is the negation of this value.
        """
        pass

    @abstractmethod
    def atomic(
        self,
        group_id: str,
    ) -> AbstractAsyncContextManager["TransactionStoreInterface"]:
        """
        Open a unit of work for one group.

        Usage:
            async with store.atomic(group_id) as tx:
                await tx.delete_adjustments(group_id)
                await tx.insert(draft)

        Everything done through `tx` commits together when the block
        exits, or not at all if it raises. Writers to the same group are
        serialized for the duration of the block.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID, in chronological order.
        """
        pass

    @abstractmethod
    async def get_events_for_group(
        self,
        group_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent events of a group (newest first).
        """
        pass


class StoreError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StoreError):
    """Entity not found in storage."""
    pass


class ConnectionError(StoreError):
    """Could not connect to storage backend."""
    pass
