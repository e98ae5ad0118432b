"""Tests for the SQL transaction store and audit storage."""

import asyncio
import pytest
from datetime import date
from uuid import uuid4

from sqlalchemy import update

from household_ledger.models.audit import AuditEventBuilder
from household_ledger.models.transaction import (
    INITIAL_BALANCE_NOTE,
    LEGACY_BUDGET_NOTE,
    EntryKind,
    TransactionDraft,
    TransactionUpdate,
)
from household_ledger.services.storage import (
    ConnectionError,
    LedgerDatabase,
    NotFoundError,
    SqlAuditStorage,
    SqlTransactionStore,
    StoreError,
)
from household_ledger.services.storage.tables import LedgerGroupRow


GROUP = "household-a"


def draft(amount, day, note="", kind=EntryKind.USER, group_id=GROUP):
    return TransactionDraft(
        group_id=group_id,
        amount=amount,
        transaction_date=day,
        note=note,
        kind=kind,
    )


def materialized_matches_sum(store, group_id=GROUP) -> bool:
    stored = asyncio.run(store.amount_sum(group_id))
    actual = asyncio.run(store.totals(group_id)).amount_sum
    return stored == actual


class TestInsertAndGet:
    """Tests for insert/get."""

    def test_insert_assigns_id_and_timestamp(self, store):
        txn_id = asyncio.run(store.insert(draft(1200, date(2024, 5, 1), "Groceries")))
        txn = asyncio.run(store.get(txn_id))

        assert txn.id == txn_id
        assert txn.amount == 1200
        assert txn.note == "Groceries"
        assert txn.kind == EntryKind.USER
        assert txn.created_at is not None

    def test_get_missing_returns_none(self, store):
        assert asyncio.run(store.get(uuid4())) is None

    def test_insert_updates_materialized_total(self, store):
        asyncio.run(store.insert(draft(1200, date(2024, 5, 1))))
        asyncio.run(store.insert(draft(-500, date(2024, 5, 2))))

        assert asyncio.run(store.amount_sum(GROUP)) == 700
        assert materialized_matches_sum(store)

    def test_unknown_group_sums_to_zero(self, store):
        assert asyncio.run(store.amount_sum("nobody")) == 0
        totals = asyncio.run(store.totals("nobody"))
        assert totals.total_income == 0
        assert totals.total_expense == 0


class TestQuery:
    """Tests for ordering and filters."""

    def test_ledger_order(self, store):
        """Date first, then insertion order within a day."""
        late = asyncio.run(store.insert(draft(200, date(2024, 5, 3))))
        first = asyncio.run(store.insert(draft(1000, date(2024, 5, 1))))
        second = asyncio.run(store.insert(draft(-500, date(2024, 5, 1))))

        rows = asyncio.run(store.query(GROUP))
        assert [t.id for t in rows] == [first, second, late]

    def test_same_instant_falls_back_to_insertion_order(self, store):
        async def insert_batch():
            async with store.atomic(GROUP) as tx:
                return [
                    await tx.insert(draft(amount, date(2024, 5, 1)))
                    for amount in (1, 2, 3, 4)
                ]

        ids = asyncio.run(insert_batch())
        rows = asyncio.run(store.query(GROUP))
        assert [t.id for t in rows] == ids

    def test_date_filters(self, store):
        for day in (date(2024, 4, 30), date(2024, 5, 1), date(2024, 5, 31), date(2024, 6, 1)):
            asyncio.run(store.insert(draft(10, day)))

        window = asyncio.run(store.query(GROUP, date_from=date(2024, 5, 1), date_to=date(2024, 5, 31)))
        assert [t.transaction_date for t in window] == [date(2024, 5, 1), date(2024, 5, 31)]

        before = asyncio.run(store.query(GROUP, before=date(2024, 5, 1)))
        assert [t.transaction_date for t in before] == [date(2024, 4, 30)]

    def test_groups_are_isolated(self, store):
        asyncio.run(store.insert(draft(10, date(2024, 5, 1))))
        asyncio.run(store.insert(draft(99, date(2024, 5, 1), group_id="household-b")))

        assert len(asyncio.run(store.query(GROUP))) == 1
        assert asyncio.run(store.amount_sum("household-b")) == 99

    def test_adjustments_only_includes_legacy_notes(self, store):
        asyncio.run(store.insert(draft(10, date(2024, 5, 1), "Lunch")))
        asyncio.run(store.insert(draft(-300, date(2000, 1, 1), LEGACY_BUDGET_NOTE)))
        asyncio.run(store.insert(draft(
            -500, date(2000, 1, 1), INITIAL_BALANCE_NOTE, kind=EntryKind.INITIAL_BALANCE,
        )))

        adjustments = asyncio.run(store.query(GROUP, adjustments_only=True))
        assert sorted(t.amount for t in adjustments) == [-500, -300]


class TestTotals:
    """Tests for server-side aggregates."""

    def test_income_and_expense_split(self, store):
        asyncio.run(store.insert(draft(1000, date(2024, 5, 1))))
        asyncio.run(store.insert(draft(-400, date(2024, 5, 2))))
        asyncio.run(store.insert(draft(250, date(2024, 6, 1))))

        totals = asyncio.run(store.totals(GROUP))
        assert totals.total_income == 400
        assert totals.total_expense == 1250

    def test_before_and_through(self, store):
        asyncio.run(store.insert(draft(1000, date(2024, 4, 30))))
        asyncio.run(store.insert(draft(-400, date(2024, 5, 1))))

        assert asyncio.run(store.totals(GROUP, before=date(2024, 5, 1))).total_expense == 1000
        assert asyncio.run(store.totals(GROUP, before=date(2024, 5, 1))).total_income == 0
        assert asyncio.run(store.totals(GROUP, through=date(2024, 5, 1))).total_income == 400


class TestUpdateAndDelete:
    """Tests for update/delete."""

    def test_update_writes_values_verbatim(self, store):
        txn_id = asyncio.run(store.insert(draft(1000, date(2024, 5, 1), "Old")))
        updated = asyncio.run(store.update(
            txn_id,
            TransactionUpdate(amount=-250, note="New", transaction_date=date(2024, 5, 9)),
        ))

        assert updated.amount == -250
        assert updated.note == "New"
        assert updated.transaction_date == date(2024, 5, 9)
        assert asyncio.run(store.amount_sum(GROUP)) == -250
        assert materialized_matches_sum(store)

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(store.update(uuid4(), TransactionUpdate(note="x")))

    def test_delete(self, store):
        txn_id = asyncio.run(store.insert(draft(1000, date(2024, 5, 1))))
        assert asyncio.run(store.delete(txn_id)) is True
        assert asyncio.run(store.get(txn_id)) is None
        assert asyncio.run(store.amount_sum(GROUP)) == 0

    def test_delete_missing_returns_false(self, store):
        assert asyncio.run(store.delete(uuid4())) is False

    def test_delete_adjustments_spares_user_rows(self, store):
        keep = asyncio.run(store.insert(draft(700, date(2024, 5, 1), "Rent")))
        asyncio.run(store.insert(draft(-300, date(2000, 1, 1), LEGACY_BUDGET_NOTE)))
        asyncio.run(store.insert(draft(
            -500, date(2000, 1, 1), "balance-added", kind=EntryKind.BALANCE_ADDED,
        )))

        removed = asyncio.run(store.delete_adjustments(GROUP))

        assert removed == 2
        assert [t.id for t in asyncio.run(store.query(GROUP))] == [keep]
        assert asyncio.run(store.amount_sum(GROUP)) == 700


class TestAtomic:
    """Tests for the unit of work."""

    def test_commit_on_success(self, store):
        async def work():
            async with store.atomic(GROUP) as tx:
                await tx.insert(draft(100, date(2024, 5, 1)))
                await tx.insert(draft(200, date(2024, 5, 2)))
                # Reads inside the block see the uncommitted writes
                return await tx.amount_sum(GROUP)

        assert asyncio.run(work()) == 300
        assert len(asyncio.run(store.query(GROUP))) == 2

    def test_rollback_on_exception(self, store):
        asyncio.run(store.insert(draft(100, date(2024, 5, 1))))

        async def work():
            async with store.atomic(GROUP) as tx:
                await tx.delete_adjustments(GROUP)
                await tx.insert(draft(999, date(2024, 5, 2)))
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(work())

        assert [t.amount for t in asyncio.run(store.query(GROUP))] == [100]
        assert asyncio.run(store.amount_sum(GROUP)) == 100

    def test_nested_atomic_joins_outer(self, store):
        async def work():
            async with store.atomic(GROUP) as tx:
                async with tx.atomic(GROUP) as inner:
                    assert inner is tx
                    await inner.insert(draft(5, date(2024, 5, 1)))
                raise RuntimeError("abort outer")

        with pytest.raises(RuntimeError):
            asyncio.run(work())
        assert asyncio.run(store.query(GROUP)) == []

    def test_reads_do_not_wait_for_an_open_write(self, file_database):
        """Readers see committed data while another session holds the write lock."""
        writer = SqlTransactionStore(file_database)
        reader = SqlTransactionStore(file_database)
        asyncio.run(writer.insert(draft(10, date(2024, 5, 1))))

        async def work():
            async with writer.atomic(GROUP) as tx:
                await tx.insert(draft(20, date(2024, 5, 2)))
                rows = await reader.query(GROUP)
                totals = await reader.totals(GROUP)
                return [t.amount for t in rows], totals.amount_sum, await reader.amount_sum(GROUP)

        assert asyncio.run(work()) == ([10], 10, 10)
        assert asyncio.run(reader.amount_sum(GROUP)) == 30


class TestStorableRange:
    """Amounts and group totals stay within the 64-bit columns."""

    def test_total_overflow_raises_store_error(self, store):
        asyncio.run(store.insert(draft(2**63 - 10, date(2024, 5, 1))))

        with pytest.raises(StoreError, match="overflow"):
            asyncio.run(store.insert(draft(2**63 - 10, date(2024, 5, 2))))

        assert len(asyncio.run(store.query(GROUP))) == 1
        assert asyncio.run(store.amount_sum(GROUP)) == 2**63 - 10
        assert materialized_matches_sum(store)

    def test_oversized_amount_raises_store_error(self, store):
        with pytest.raises(StoreError):
            asyncio.run(store.insert(draft(2**63, date(2024, 5, 1))))

        assert asyncio.run(store.query(GROUP)) == []
        assert asyncio.run(store.amount_sum(GROUP)) == 0

    def test_update_overflow_raises_store_error(self, store):
        asyncio.run(store.insert(draft(2**62, date(2024, 5, 1))))
        txn_id = asyncio.run(store.insert(draft(1, date(2024, 5, 2))))

        with pytest.raises(StoreError):
            asyncio.run(store.update(txn_id, TransactionUpdate(amount=2**62)))

        assert asyncio.run(store.get(txn_id)).amount == 1
        assert asyncio.run(store.amount_sum(GROUP)) == 2**62 + 1


class TestMaterializedTotal:
    """Tests for the per-group running total."""

    def test_recompute_repairs_drift(self, database, store):
        asyncio.run(store.insert(draft(1000, date(2024, 5, 1))))
        asyncio.run(store.insert(draft(-300, date(2024, 5, 2))))

        with database.session_scope() as session:
            session.execute(
                update(LedgerGroupRow)
                .where(LedgerGroupRow.group_id == GROUP)
                .values(amount_sum=12345)
            )

        assert asyncio.run(store.recompute_group_total(GROUP)) == 700
        assert asyncio.run(store.amount_sum(GROUP)) == 700

    def test_total_tracks_every_write(self, store):
        ids = [
            asyncio.run(store.insert(draft(amount, date(2024, 5, day))))
            for day, amount in ((1, 500), (2, -1200), (3, 75))
        ]
        asyncio.run(store.update(ids[0], TransactionUpdate(amount=900)))
        asyncio.run(store.delete(ids[2]))
        asyncio.run(store.delete_adjustments(GROUP))

        assert asyncio.run(store.amount_sum(GROUP)) == -300
        assert materialized_matches_sum(store)


class TestDatabase:
    """Tests for LedgerDatabase."""

    def test_check_connection(self, database):
        assert database.check_connection() is True

    def test_check_connection_failure(self, tmp_path):
        db = LedgerDatabase(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'ledger.db'}")
        with pytest.raises(ConnectionError):
            db.check_connection()
        db.dispose()

    def test_file_database_persists(self, file_database):
        asyncio.run(SqlTransactionStore(file_database).insert(draft(10, date(2024, 5, 1))))
        reopened = LedgerDatabase(file_database.url)
        assert asyncio.run(SqlTransactionStore(reopened).amount_sum(GROUP)) == 10
        reopened.dispose()


class TestAuditStorage:
    """Tests for SqlAuditStorage."""

    def test_append_and_read_back(self, database):
        storage = SqlAuditStorage(database)
        correlation_id = uuid4()
        event = AuditEventBuilder.balance_added(
            group_id=GROUP,
            transaction_id=uuid4(),
            added=1000,
            new_balance=1000,
            correlation_id=correlation_id,
        )

        assert asyncio.run(storage.append_event(event)) is True

        by_correlation = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert [e.event_id for e in by_correlation] == [event.event_id]
        assert by_correlation[0].details == {"added": 1000, "new_balance": 1000}

        by_group = asyncio.run(storage.get_events_for_group(GROUP))
        assert len(by_group) == 1

    def test_append_failure_returns_false(self, database):
        storage = SqlAuditStorage(database)
        event = AuditEventBuilder.store_error("x", "y", group_id=GROUP)
        assert asyncio.run(storage.append_event(event)) is True
        # Same event id again violates the primary key
        assert asyncio.run(storage.append_event(event)) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
