"""
SQL Storage Implementation

DESIGN DECISION: A relational database is the storage backend because the
balance operations need real transactions:
1. "Set balance" deletes, re-sums and inserts; all three must commit together
2. Two members adjusting the same household must not interleave
3. Sums run as aggregate queries instead of reading whole histories

Every write locks the group's row in ledger_groups (SELECT ... FOR UPDATE)
and keeps its materialized amount_sum in step, inside the same database
transaction as the write itself.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, nullcontext
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from household_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from household_ledger.models.transaction import (
    RESERVED_NOTES,
    AmountTotals,
    EntryKind,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
    utc_now,
)
from household_ledger.services.storage.database import LedgerDatabase
from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    StoreError,
    TransactionStoreInterface,
)
from household_ledger.services.storage.tables import (
    AuditEventRow,
    LedgerGroupRow,
    TransactionRow,
)


logger = structlog.get_logger(__name__)

# Range of the BigInteger amount and amount_sum columns
_BIGINT_MIN = -(2**63)
_BIGINT_MAX = 2**63 - 1


def _fits_bigint(value: int) -> bool:
    return _BIGINT_MIN <= value <= _BIGINT_MAX


def _adjustment_filter():
    """Synthetic entries, including legacy ones that predate the kind column."""
    return or_(
        TransactionRow.kind != EntryKind.USER.value,
        TransactionRow.note.in_(sorted(RESERVED_NOTES)),
    )


class SqlTransactionStore(TransactionStoreInterface):
    """
    SQLAlchemy implementation of the transaction store.

    An instance is either unbound (each call runs in its own database
    transaction) or bound to the session of one `atomic()` block.
    """

    def __init__(
        self,
        database: LedgerDatabase,
        session: Optional[Session] = None,
    ):
        self._database = database
        self._session = session
        self._locked_groups: dict[str, LedgerGroupRow] = {}

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _row_to_transaction(self, row: TransactionRow) -> Transaction:
        return Transaction(
            id=UUID(row.id),
            group_id=row.group_id,
            amount=int(row.amount),
            transaction_date=row.transaction_date,
            created_at=row.created_at,
            note=row.note or "",
            attachment_ref=row.attachment_ref,
            created_by=row.created_by,
            kind=EntryKind(row.kind),
        )

    def _draft_to_row(self, draft: TransactionDraft) -> TransactionRow:
        return TransactionRow(
            id=str(uuid4()),
            group_id=draft.group_id,
            amount=draft.amount,
            transaction_date=draft.transaction_date,
            created_at=utc_now(),
            note=draft.note,
            attachment_ref=draft.attachment_ref,
            created_by=draft.created_by,
            kind=draft.kind.value,
        )

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def atomic(self, group_id: str) -> AsyncIterator["SqlTransactionStore"]:
        if self._session is not None:
            # Already inside a unit of work; join it
            self._lock_group(group_id)
            yield self
            return

        session = self._database.new_session(write=True)
        bound = SqlTransactionStore(self._database, session=session)
        try:
            try:
                bound._lock_group(group_id)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to lock group {group_id}: {e}") from e
            yield bound
            session.commit()
        except (SQLAlchemyError, OverflowError) as e:
            session.rollback()
            raise StoreError(f"Transaction for group {group_id} failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _lock_group(self, group_id: str) -> LedgerGroupRow:
        """
        Lock the group's row for the rest of the transaction, creating it
        on first use.
        """
        group = self._locked_groups.get(group_id)
        if group is not None:
            return group

        session = self._session
        stmt = (
            select(LedgerGroupRow)
            .where(LedgerGroupRow.group_id == group_id)
            .with_for_update()
        )
        group = session.execute(stmt).scalar_one_or_none()

        if group is None:
            # Another writer may create the same group concurrently; use a
            # savepoint so losing that race doesn't abort the transaction
            savepoint = session.begin_nested()
            try:
                group = LedgerGroupRow(
                    group_id=group_id,
                    amount_sum=0,
                    updated_at=utc_now(),
                )
                session.add(group)
                session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                group = session.execute(stmt).scalar_one()

        self._locked_groups[group_id] = group
        return group

    def _apply_delta(self, group_id: str, delta: int) -> None:
        group = self._lock_group(group_id)
        new_sum = group.amount_sum + delta
        if not _fits_bigint(new_sum):
            raise StoreError(f"Total for group {group_id} would overflow: {new_sum}")
        group.amount_sum = new_sum
        group.updated_at = utc_now()

    def _read_session(self):
        """Reads reuse the bound session, or run in a short transaction."""
        if self._session is not None:
            return nullcontext(self._session)
        return self._database.session_scope()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, draft: TransactionDraft) -> UUID:
        """Store a new transaction and fold its amount into the group total."""
        if self._session is None:
            async with self.atomic(draft.group_id) as tx:
                return await tx.insert(draft)

        if not _fits_bigint(draft.amount):
            raise StoreError(f"Amount out of storable range: {draft.amount}")

        try:
            # Lock before adding the row so autoflush never writes a row
            # whose group doesn't exist yet
            self._apply_delta(draft.group_id, draft.amount)
            row = self._draft_to_row(draft)
            self._session.add(row)
            self._session.flush()
        except (SQLAlchemyError, OverflowError) as e:
            raise StoreError(f"Failed to insert transaction: {e}") from e
        return UUID(row.id)

    async def update(
        self,
        transaction_id: UUID,
        changes: TransactionUpdate,
    ) -> Transaction:
        if self._session is None:
            existing = await self.get(transaction_id)
            if existing is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            async with self.atomic(existing.group_id) as tx:
                return await tx.update(transaction_id, changes)

        try:
            row = self._locked_row(transaction_id)
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            values = changes.model_dump(exclude_unset=True)
            if values.get("amount") is not None:
                if not _fits_bigint(values["amount"]):
                    raise StoreError(f"Amount out of storable range: {values['amount']}")
                self._apply_delta(row.group_id, values["amount"] - row.amount)
            for field, value in values.items():
                if field == "note" and value is None:
                    value = ""
                if field in ("amount", "transaction_date") and value is None:
                    continue
                setattr(row, field, value)

            self._session.flush()
            return self._row_to_transaction(row)
        except (SQLAlchemyError, OverflowError) as e:
            raise StoreError(f"Failed to update transaction: {e}") from e

    async def delete(self, transaction_id: UUID) -> bool:
        if self._session is None:
            existing = await self.get(transaction_id)
            if existing is None:
                return False
            async with self.atomic(existing.group_id) as tx:
                return await tx.delete(transaction_id)

        try:
            row = self._locked_row(transaction_id)
            if row is None:
                return False
            self._apply_delta(row.group_id, -row.amount)
            self._session.delete(row)
            self._session.flush()
            return True
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete transaction: {e}") from e

    async def delete_adjustments(self, group_id: str) -> int:
        if self._session is None:
            async with self.atomic(group_id) as tx:
                return await tx.delete_adjustments(group_id)

        try:
            rows = self._session.execute(
                select(TransactionRow)
                .where(TransactionRow.group_id == group_id)
                .where(_adjustment_filter())
                .with_for_update()
            ).scalars().all()

            removed_sum = 0
            for row in rows:
                removed_sum += row.amount
                self._session.delete(row)
            if rows:
                self._apply_delta(group_id, -removed_sum)
            self._session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete adjustments: {e}") from e

        logger.debug(
            "adjustments_deleted",
            group_id=group_id,
            count=len(rows),
            amount_removed=removed_sum,
        )
        return len(rows)

    def _locked_row(self, transaction_id: UUID) -> Optional[TransactionRow]:
        return self._session.execute(
            select(TransactionRow)
            .where(TransactionRow.id == str(transaction_id))
            .with_for_update()
        ).scalar_one_or_none()

    async def recompute_group_total(self, group_id: str) -> int:
        """
        Rebuild the materialized total of a group from its rows.

        Maintenance operation for rows written outside this store.
        Returns the recomputed sum.
        """
        if self._session is None:
            async with self.atomic(group_id) as tx:
                return await tx.recompute_group_total(group_id)

        try:
            actual = self._session.execute(
                select(func.coalesce(func.sum(TransactionRow.amount), 0))
                .where(TransactionRow.group_id == group_id)
            ).scalar_one()
            group = self._lock_group(group_id)
            if group.amount_sum != int(actual):
                logger.warning(
                    "group_total_drift",
                    group_id=group_id,
                    stored=group.amount_sum,
                    actual=int(actual),
                )
            group.amount_sum = int(actual)
            group.updated_at = utc_now()
            self._session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to recompute group total: {e}") from e
        return int(actual)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            with self._read_session() as session:
                row = session.execute(
                    select(TransactionRow).where(TransactionRow.id == str(transaction_id))
                ).scalar_one_or_none()
                return self._row_to_transaction(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to get transaction: {e}") from e

    async def query(
        self,
        group_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        before: Optional[date] = None,
        adjustments_only: bool = False,
    ) -> list[Transaction]:
        stmt = select(TransactionRow).where(TransactionRow.group_id == group_id)
        if date_from is not None:
            stmt = stmt.where(TransactionRow.transaction_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(TransactionRow.transaction_date <= date_to)
        if before is not None:
            stmt = stmt.where(TransactionRow.transaction_date < before)
        if adjustments_only:
            stmt = stmt.where(_adjustment_filter())
        stmt = stmt.order_by(
            TransactionRow.transaction_date,
            TransactionRow.created_at,
            TransactionRow.row_id,
        )

        try:
            with self._read_session() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._row_to_transaction(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query transactions: {e}") from e

    async def totals(
        self,
        group_id: str,
        before: Optional[date] = None,
        through: Optional[date] = None,
    ) -> AmountTotals:
        income = func.coalesce(
            func.sum(case((TransactionRow.amount < 0, -TransactionRow.amount), else_=0)),
            0,
        )
        expense = func.coalesce(
            func.sum(case((TransactionRow.amount > 0, TransactionRow.amount), else_=0)),
            0,
        )
        stmt = select(income, expense).where(TransactionRow.group_id == group_id)
        if before is not None:
            stmt = stmt.where(TransactionRow.transaction_date < before)
        if through is not None:
            stmt = stmt.where(TransactionRow.transaction_date <= through)

        try:
            with self._read_session() as session:
                total_income, total_expense = session.execute(stmt).one()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to aggregate transactions: {e}") from e

        # PostgreSQL returns Decimal for SUM over BIGINT
        return AmountTotals(
            total_income=int(total_income),
            total_expense=int(total_expense),
        )

    async def amount_sum(self, group_id: str) -> int:
        try:
            with self._read_session() as session:
                value = session.execute(
                    select(LedgerGroupRow.amount_sum)
                    .where(LedgerGroupRow.group_id == group_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read group total: {e}") from e
        return int(value) if value is not None else 0


class SqlAuditStorage(AuditStorageInterface):
    """
    SQL implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, database: LedgerDatabase):
        self._database = database

    def _event_to_row(self, event: AuditEvent) -> AuditEventRow:
        return AuditEventRow(
            event_id=str(event.event_id),
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            group_id=event.group_id,
            entity_type=event.entity_type,
            entity_id=str(event.entity_id) if event.entity_id else None,
            correlation_id=str(event.correlation_id) if event.correlation_id else None,
            description=event.description,
            details_json=event.details_json(),
            error_message=event.error_message,
            is_user_action=event.is_user_action,
        )

    def _row_to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            group_id=row.group_id,
            entity_type=row.entity_type,
            entity_id=UUID(row.entity_id) if row.entity_id else None,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=json.loads(row.details_json) if row.details_json else {},
            error_message=row.error_message,
            is_user_action=row.is_user_action,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            with self._database.session_scope(write=True) as session:
                session.add(self._event_to_row(event))
            return True
        except SQLAlchemyError as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning(
                "audit_event_write_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            with self._database.session_scope() as session:
                rows = session.execute(
                    select(AuditEventRow)
                    .where(AuditEventRow.correlation_id == str(correlation_id))
                    .order_by(AuditEventRow.timestamp)
                ).scalars().all()
                return [self._row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to get audit events: {e}") from e

    async def get_events_for_group(
        self,
        group_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            with self._database.session_scope() as session:
                rows = session.execute(
                    select(AuditEventRow)
                    .where(AuditEventRow.group_id == group_id)
                    .order_by(AuditEventRow.timestamp.desc())
                    .limit(limit)
                ).scalars().all()
                return [self._row_to_event(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to get audit events: {e}") from e
