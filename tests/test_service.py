"""Tests for the LedgerService orchestrator."""

import asyncio
import threading
import pytest
from datetime import date
from uuid import uuid4

from household_ledger.audit import AuditLogger
from household_ledger.models.audit import AuditEventType
from household_ledger.models.transaction import EntryKind, INITIAL_BALANCE_NOTE
from household_ledger.orchestrator import LedgerService, create_ledger_service
from household_ledger.services.storage import (
    NotFoundError,
    SqlTransactionStore,
    StoreError,
)
from household_ledger.validation import ValidationError


GROUP = "household-a"


def event_types(service, group_id=GROUP) -> list[AuditEventType]:
    return [e.event_type for e in asyncio.run(service.get_audit_trail(group_id))]


class TestStatementViews:
    """Tests for statement and summary."""

    def test_summary_balance_matches_statement(self, service):
        asyncio.run(service.add_balance(GROUP, 20_000))
        asyncio.run(service.create_transaction(GROUP, 1500, date(2024, 4, 2)))
        asyncio.run(service.create_transaction(GROUP, -300, "2024-05-10"))
        asyncio.run(service.create_transaction(GROUP, 720, date(2024, 5, 31)))

        for reference in (date(2024, 3, 1), date(2024, 4, 30), date(2024, 5, 15), date(2024, 6, 1)):
            statement = asyncio.run(service.get_statement(GROUP, reference))
            summary = asyncio.run(service.get_month_summary(GROUP, reference))
            assert summary.balance == statement.closing_balance

    def test_statement_is_audited(self, service):
        asyncio.run(service.get_statement(GROUP, date(2024, 5, 1)))
        assert AuditEventType.STATEMENT_VIEWED in event_types(service)

    def test_current_balance(self, service):
        asyncio.run(service.set_balance(GROUP, 800))
        asyncio.run(service.create_transaction(GROUP, 300, date(2024, 5, 1)))
        assert asyncio.run(service.get_current_balance(GROUP)) == 500


class TestBalanceOperations:
    """Tests for add_balance / set_balance through the service."""

    def test_add_balance_returns_new_balance(self, service):
        assert asyncio.run(service.add_balance(GROUP, 10_000)) == 10_000
        assert asyncio.run(service.add_balance(GROUP, "500")) == 10_500

    def test_set_balance_returns_target(self, service):
        asyncio.run(service.create_transaction(GROUP, 3000, date(2024, 6, 1)))
        assert asyncio.run(service.set_balance(GROUP, 5000)) == 5000

        statement = asyncio.run(service.get_statement(GROUP, date(2024, 6, 1)))
        assert statement.closing_balance == 5000

    def test_scenario(self, service):
        assert asyncio.run(service.add_balance(GROUP, 10_000)) == 10_000

        asyncio.run(service.create_transaction(GROUP, 3000, date(2024, 6, 1), note="Groceries"))
        statement = asyncio.run(service.get_statement(GROUP, date(2024, 6, 1)))
        assert statement.closing_balance == 7000

        assert asyncio.run(service.set_balance(GROUP, 5000)) == 5000
        adjustments = asyncio.run(service.list_transactions(GROUP, adjustments_only=True))
        assert [t.note for t in adjustments] == [INITIAL_BALANCE_NOTE]

    def test_invalid_amount_is_audited(self, service):
        with pytest.raises(ValidationError):
            asyncio.run(service.add_balance(GROUP, "-5"))

        assert event_types(service) == [AuditEventType.VALIDATION_FAILED]

    def test_adjustments_are_audited(self, service):
        asyncio.run(service.add_balance(GROUP, 100))
        asyncio.run(service.set_balance(GROUP, 50))

        types = event_types(service)
        assert AuditEventType.BALANCE_ADDED in types
        assert AuditEventType.BALANCE_SET in types

    def test_oversized_amounts_rejected_before_store(self, service):
        with pytest.raises(ValidationError):
            asyncio.run(service.set_balance(GROUP, 10**20))
        with pytest.raises(ValidationError):
            asyncio.run(service.add_balance(GROUP, 2**63))
        with pytest.raises(ValidationError):
            asyncio.run(service.create_transaction(GROUP, "99999999999999999999", "2024-06-01"))

        assert asyncio.run(service.list_transactions(GROUP)) == []
        assert set(event_types(service)) == {AuditEventType.VALIDATION_FAILED}

    def test_total_overflow_is_store_error(self, service):
        asyncio.run(service.create_transaction(GROUP, 2**63 - 10, date(2024, 6, 1)))

        with pytest.raises(StoreError):
            asyncio.run(service.create_transaction(GROUP, 2**63 - 10, date(2024, 6, 2)))

        assert len(asyncio.run(service.list_transactions(GROUP))) == 1
        assert asyncio.run(service.get_current_balance(GROUP)) == -(2**63 - 10)
        assert AuditEventType.STORE_ERROR in event_types(service)

    def test_set_balance_overflowing_adjustment_is_store_error(self, service):
        """The target fits, but the correcting entry would not."""
        asyncio.run(service.create_transaction(GROUP, 2**62, date(2024, 6, 1)))

        with pytest.raises(StoreError):
            asyncio.run(service.set_balance(GROUP, 2**63 - 1))

        assert asyncio.run(service.get_current_balance(GROUP)) == -(2**62)
        assert asyncio.run(service.list_transactions(GROUP, adjustments_only=True)) == []
        assert AuditEventType.STORE_ERROR in event_types(service)


class TestTransactionCrud:
    """Tests for create/update/delete/get."""

    def test_create_and_get(self, service):
        txn = asyncio.run(service.create_transaction(
            GROUP, "1,200", "2024-05-01",
            note="Groceries",
            attachment_ref="receipts/42.jpg",
            created_by="member-1",
        ))

        fetched = asyncio.run(service.get_transaction(txn.id))
        assert fetched == txn
        assert fetched.amount == 1200
        assert fetched.attachment_ref == "receipts/42.jpg"
        assert fetched.created_by == "member-1"
        assert AuditEventType.TRANSACTION_CREATED in event_types(service)

    def test_create_rejects_invalid_input(self, service):
        bad_inputs = [
            {"amount": 0, "transaction_date": date(2024, 5, 1)},
            {"amount": "abc", "transaction_date": date(2024, 5, 1)},
            {"amount": 100, "transaction_date": "not a date"},
            {"amount": 100, "transaction_date": date(2000, 1, 1)},
            {"amount": 100, "transaction_date": date(2024, 5, 1), "note": "balance-added"},
            {"amount": 100, "transaction_date": date(2024, 5, 1), "note": "x" * 501},
        ]
        for kwargs in bad_inputs:
            with pytest.raises(ValidationError) as exc_info:
                asyncio.run(service.create_transaction(GROUP, **kwargs))
            assert exc_info.value.issues

        assert asyncio.run(service.list_transactions(GROUP)) == []

    def test_update_keeps_income_as_income(self, service):
        income = asyncio.run(service.create_transaction(GROUP, -500, date(2024, 5, 1)))

        updated = asyncio.run(service.update_transaction(income.id, amount=800))
        assert updated.amount == -800

        updated = asyncio.run(service.update_transaction(income.id, amount="-900"))
        assert updated.amount == -900

    def test_update_keeps_expense_as_expense(self, service):
        expense = asyncio.run(service.create_transaction(GROUP, 300, date(2024, 5, 1)))

        updated = asyncio.run(service.update_transaction(expense.id, amount=-450))
        assert updated.amount == 450
        assert asyncio.run(service.get_current_balance(GROUP)) == -450

    def test_update_date_and_note(self, service):
        txn = asyncio.run(service.create_transaction(GROUP, 300, date(2024, 5, 1), note="a"))

        updated = asyncio.run(service.update_transaction(
            txn.id, transaction_date="2024-05-20", note="b",
        ))

        assert updated.transaction_date == date(2024, 5, 20)
        assert updated.note == "b"
        assert updated.amount == 300
        assert AuditEventType.TRANSACTION_UPDATED in event_types(service)

    def test_update_with_empty_receipt_clears_it(self, service):
        txn = asyncio.run(service.create_transaction(
            GROUP, 300, date(2024, 5, 1), attachment_ref="receipts/7.jpg",
        ))

        kept = asyncio.run(service.update_transaction(txn.id, note="Bakery"))
        assert kept.attachment_ref == "receipts/7.jpg"

        cleared = asyncio.run(service.update_transaction(txn.id, attachment_ref=""))
        assert cleared.attachment_ref is None
        assert cleared.note == "Bakery"
        assert asyncio.run(service.get_transaction(txn.id)).attachment_ref is None

    def test_update_adjustment_rejected(self, service):
        asyncio.run(service.add_balance(GROUP, 1000))
        synthetic = asyncio.run(service.list_transactions(GROUP, adjustments_only=True))[0]

        with pytest.raises(ValidationError):
            asyncio.run(service.update_transaction(synthetic.id, amount=5))

        assert asyncio.run(service.get_transaction(synthetic.id)).amount == -1000

    def test_update_missing_raises(self, service):
        with pytest.raises(NotFoundError):
            asyncio.run(service.update_transaction(uuid4(), note="x"))

    def test_delete(self, service):
        txn = asyncio.run(service.create_transaction(GROUP, 300, date(2024, 5, 1)))
        asyncio.run(service.delete_transaction(txn.id))

        with pytest.raises(NotFoundError):
            asyncio.run(service.get_transaction(txn.id))
        assert asyncio.run(service.get_current_balance(GROUP)) == 0
        assert AuditEventType.TRANSACTION_DELETED in event_types(service)

    def test_delete_adjustment_allowed(self, service):
        asyncio.run(service.add_balance(GROUP, 1000))
        synthetic = asyncio.run(service.list_transactions(GROUP, adjustments_only=True))[0]
        assert synthetic.kind == EntryKind.BALANCE_ADDED

        asyncio.run(service.delete_transaction(synthetic.id))
        assert asyncio.run(service.get_current_balance(GROUP)) == 0

    def test_delete_missing_raises(self, service):
        with pytest.raises(NotFoundError):
            asyncio.run(service.delete_transaction(uuid4()))


class TestStoreFailures:
    """Store errors propagate unchanged and are audited."""

    def test_store_error_is_reraised_and_audited(self, service, monkeypatch):
        async def failing_insert(self, draft):
            raise StoreError("database is locked")

        monkeypatch.setattr(SqlTransactionStore, "insert", failing_insert)

        with pytest.raises(StoreError, match="database is locked"):
            asyncio.run(service.set_balance(GROUP, 100))

        assert AuditEventType.STORE_ERROR in event_types(service)

    def test_current_balance_failure_is_reraised_and_audited(self, service, monkeypatch):
        async def failing_amount_sum(self, group_id):
            raise StoreError("disk I/O error")

        monkeypatch.setattr(SqlTransactionStore, "amount_sum", failing_amount_sum)

        with pytest.raises(StoreError, match="disk I/O error"):
            asyncio.run(service.get_current_balance(GROUP))

        assert event_types(service) == [AuditEventType.STORE_ERROR]

    def test_audit_storage_failure_does_not_break_writes(self, database):
        class BrokenAuditStorage:
            async def append_event(self, event):
                raise RuntimeError("audit table missing")

        service = LedgerService(
            store=SqlTransactionStore(database),
            audit_logger=AuditLogger(BrokenAuditStorage()),
        )
        assert asyncio.run(service.add_balance(GROUP, 100)) == 100


class TestConcurrency:
    """Concurrent writers on one group."""

    def test_concurrent_set_balance(self, file_database, service_factory):
        targets = [5000, 8000]
        errors = []
        barrier = threading.Barrier(len(targets))

        asyncio.run(service_factory(file_database).create_transaction(
            GROUP, 1200, date(2024, 5, 1),
        ))

        def worker(target):
            service = service_factory(file_database)
            barrier.wait()
            try:
                for _ in range(5):
                    asyncio.run(service.set_balance(GROUP, target))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []

        service = service_factory(file_database)
        adjustments = asyncio.run(service.list_transactions(GROUP, adjustments_only=True))
        assert len(adjustments) == 1

        statement = asyncio.run(service.get_statement(GROUP, date(2024, 5, 1)))
        assert statement.closing_balance in targets
        assert asyncio.run(service.get_current_balance(GROUP)) == statement.closing_balance

    def test_concurrent_add_balance_loses_nothing(self, file_database, service_factory):
        def worker():
            service = service_factory(file_database)
            for _ in range(10):
                asyncio.run(service.add_balance(GROUP, 1))

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        service = service_factory(file_database)
        assert asyncio.run(service.get_current_balance(GROUP)) == 30
        assert len(asyncio.run(service.list_transactions(GROUP))) == 30


class TestFactory:
    """Tests for create_ledger_service."""

    def test_creates_schema_and_service(self, tmp_path):
        service, database = create_ledger_service(
            database_url=f"sqlite+pysqlite:///{tmp_path / 'app.db'}",
        )
        try:
            assert database.check_connection()
            assert asyncio.run(service.add_balance(GROUP, 7)) == 7
            assert len(asyncio.run(service.get_audit_trail(GROUP))) == 1
        finally:
            database.dispose()

    def test_local_only_audit(self):
        service, database = create_ledger_service(
            database_url="sqlite+pysqlite:///:memory:",
            use_audit_storage=False,
        )
        try:
            asyncio.run(service.add_balance(GROUP, 7))
            assert asyncio.run(service.get_audit_trail(GROUP)) == []
        finally:
            database.dispose()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
