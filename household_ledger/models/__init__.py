"""
Data Models Package

This package contains all Pydantic models used by the household ledger.
All data flowing through the system must conform to these schemas.
"""

from household_ledger.models.transaction import (
    BALANCE_ADDED_NOTE,
    INITIAL_BALANCE_NOTE,
    LEGACY_BUDGET_NOTE,
    RESERVED_NOTES,
    AdjustmentResult,
    AmountTotals,
    AnnotatedRow,
    EntryKind,
    MonthSummary,
    Statement,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from household_ledger.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Ledger models
    "BALANCE_ADDED_NOTE",
    "INITIAL_BALANCE_NOTE",
    "LEGACY_BUDGET_NOTE",
    "RESERVED_NOTES",
    "AdjustmentResult",
    "AmountTotals",
    "AnnotatedRow",
    "EntryKind",
    "MonthSummary",
    "Statement",
    "Transaction",
    "TransactionDraft",
    "TransactionUpdate",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
