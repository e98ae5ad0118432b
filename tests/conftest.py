"""
Shared fixtures.

Every test gets a fresh SQLite database. The in-memory one is fast and
covers almost everything; tests that need several connections at once
(threads) use a file in tmp_path.
"""

from datetime import date

import pytest

from household_ledger.audit import AuditLogger
from household_ledger.config import LedgerSettings
from household_ledger.orchestrator import LedgerService
from household_ledger.services.storage import (
    LedgerDatabase,
    SqlAuditStorage,
    SqlTransactionStore,
)
from household_ledger.validation import TransactionValidator


SENTINEL = date(2000, 1, 1)
GROUP = "household-a"


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        sentinel_date=SENTINEL,
        max_transaction_amount=1_000_000,
        future_date_tolerance_days=30,
    )


@pytest.fixture
def database():
    db = LedgerDatabase("sqlite+pysqlite:///:memory:", echo=False)
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def file_database(tmp_path):
    db = LedgerDatabase(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}", echo=False)
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return SqlTransactionStore(database)


@pytest.fixture
def validator(ledger_settings):
    return TransactionValidator(ledger_settings)


def build_service(database, ledger_settings) -> LedgerService:
    return LedgerService(
        store=SqlTransactionStore(database),
        validator=TransactionValidator(ledger_settings),
        audit_logger=AuditLogger(SqlAuditStorage(database)),
    )


@pytest.fixture
def service(database, ledger_settings):
    return build_service(database, ledger_settings)


@pytest.fixture
def service_factory(ledger_settings):
    """Build independent services over one database (one per thread)."""
    def factory(database):
        return build_service(database, ledger_settings)
    return factory
