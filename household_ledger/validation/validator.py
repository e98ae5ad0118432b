"""
Two-Stage Validation Pipeline

DESIGN DECISION: Member input is checked before anything touches the store.

PARSING:
- Raw form values (strings, numbers) become integers and dates
- Anything that isn't a whole, finite number is rejected outright

STAGE 1 - SCHEMA VALIDATION:
- Required values present
- Amount non-zero
- Date after the sentinel date used by balance adjustments
- Reserved adjustment notes not used on member entries

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Far-future date detection
These only warn.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the service refuses to write when there are errors.
"""

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from household_ledger.config import LedgerSettings, get_settings
from household_ledger.models.transaction import (
    RESERVED_NOTES,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
)
from household_ledger.models.validation import ValidationIssue, ValidationResult


_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")

# Amounts and group totals are stored as signed 64-bit integers
MAX_STORABLE_AMOUNT = 2**63 - 1


class ValidationError(Exception):
    """Input rejected before any store access."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def from_result(cls, result: ValidationResult, operation: str) -> "ValidationError":
        errors = [issue for issue in result.issues if issue.severity == "error"]
        message = "; ".join(issue.message for issue in errors) or "Invalid input"
        return cls(f"{operation} rejected: {message}", result.issues)

    def issues_as_dicts(self) -> list[dict]:
        return [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in self.issues
        ]


def _single_issue_error(
    field: str,
    issue_type: str,
    message: str,
    suggested_fix: Optional[str] = None,
) -> ValidationError:
    issue = ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
        suggested_fix=suggested_fix,
    )
    return ValidationError(message, [issue])


def _check_storable(value: int, field: str) -> int:
    if abs(value) > MAX_STORABLE_AMOUNT:
        raise _single_issue_error(
            field, "out_of_range",
            f"Amount is too large to record: {value}",
            suggested_fix=f"Enter an amount between -{MAX_STORABLE_AMOUNT} and {MAX_STORABLE_AMOUNT}",
        )
    return value


def parse_amount(raw: Any, field: str = "amount") -> int:
    """
    Turn a raw form value into an integer amount.

    Accepts ints, integral Decimals and floats, and strings of digits with
    an optional sign and thousands separators.

    Raises:
        ValidationError: If the value is missing, not a whole finite number,
            or outside the signed 64-bit range
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise _single_issue_error(
            field, "missing", "Amount is required",
            suggested_fix="Enter a whole number",
        )

    if isinstance(raw, bool):
        raise _single_issue_error(field, "not_a_number", f"Not a number: {raw!r}")

    if isinstance(raw, int):
        return _check_storable(raw, field)

    if isinstance(raw, (float, Decimal)):
        finite = raw.is_finite() if isinstance(raw, Decimal) else math.isfinite(raw)
        if not finite or raw != int(raw):
            raise _single_issue_error(
                field, "not_an_integer",
                f"Amount must be a whole number in the smallest currency unit: {raw}",
            )
        return _check_storable(int(raw), field)

    if isinstance(raw, str):
        cleaned = raw.strip().replace(",", "").replace("_", "")
        if _INTEGER_PATTERN.match(cleaned):
            return _check_storable(int(cleaned), field)

    raise _single_issue_error(
        field, "not_a_number",
        f"Not a valid amount: {raw!r}",
        suggested_fix="Enter a whole number such as 1200",
    )


def parse_date(raw: Any, field: str = "transaction_date") -> date:
    """
    Turn a raw form value into a calendar date.

    Raises:
        ValidationError: If the value is missing or not an ISO date
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise _single_issue_error(field, "missing", "Date is required")

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError:
            pass

    raise _single_issue_error(
        field, "invalid_format",
        f"Not a valid date: {raw!r}",
        suggested_fix="Use the YYYY-MM-DD format",
    )


class TransactionValidator:
    """
    Validates member-entered transactions through a two-stage pipeline.

    Stage 1: Schema validation (errors block the write)
    Stage 2: Semantic validation (warnings only)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    @property
    def sentinel_date(self) -> date:
        return self._settings.sentinel_date

    def _check_amount(self, amount: int, issues: list[ValidationIssue]) -> None:
        if amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must not be zero",
                severity="error",
                suggested_fix="Delete the entry instead of zeroing it",
            ))
        elif abs(amount) > MAX_STORABLE_AMOUNT:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Amount is too large to record: {amount}",
                severity="error",
            ))

    def _check_date(self, value: date, issues: list[ValidationIssue]) -> None:
        if value <= self.sentinel_date:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="out_of_range",
                message=f"Date must be after {self.sentinel_date.isoformat()}",
                severity="error",
                suggested_fix="Use the balance form to record an opening balance",
            ))

    def _check_note(self, note: Optional[str], issues: list[ValidationIssue]) -> None:
        if note and note.strip() in RESERVED_NOTES:
            issues.append(ValidationIssue(
                field="note",
                issue_type="reserved_note",
                message=f"'{note.strip()}' is reserved for balance adjustments",
                severity="error",
                suggested_fix="Choose a different note",
            ))

    def _validate_semantic(
        self,
        amount: Optional[int],
        transaction_date: Optional[date],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if amount is not None and abs(amount) > self._settings.max_transaction_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({abs(amount):,}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        max_future = date.today() + timedelta(days=self._settings.future_date_tolerance_days)
        if transaction_date is not None and transaction_date > max_future:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="future_date",
                message=f"Date ({transaction_date}) is far in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _build_result(
        self,
        schema_issues: list[ValidationIssue],
        semantic: Optional[tuple[bool, list[ValidationIssue]]],
    ) -> ValidationResult:
        schema_valid = not any(i.severity == "error" for i in schema_issues)
        all_issues = list(schema_issues)
        semantic_valid = False
        if semantic is not None:
            semantic_valid, semantic_issues = semantic
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    def validate_draft(self, draft: TransactionDraft) -> ValidationResult:
        """Run both stages over a new member entry."""
        issues: list[ValidationIssue] = []
        self._check_amount(draft.amount, issues)
        self._check_date(draft.transaction_date, issues)
        self._check_note(draft.note, issues)
        if draft.is_adjustment:
            issues.append(ValidationIssue(
                field="kind",
                issue_type="reserved_kind",
                message="Adjustment entries can only be created by balance operations",
                severity="error",
            ))

        semantic = None
        if not any(i.severity == "error" for i in issues):
            semantic = self._validate_semantic(draft.amount, draft.transaction_date)
        return self._build_result(issues, semantic)

    def validate_update(
        self,
        original: Transaction,
        changes: TransactionUpdate,
    ) -> ValidationResult:
        """Run both stages over an edit of a stored entry."""
        issues: list[ValidationIssue] = []
        if original.is_adjustment:
            issues.append(ValidationIssue(
                field="kind",
                issue_type="reserved_kind",
                message="Balance adjustment entries can't be edited",
                severity="error",
                suggested_fix="Use the balance form, or delete the entry",
            ))
        if changes.is_empty:
            issues.append(ValidationIssue(
                field="changes",
                issue_type="missing",
                message="Nothing to change",
                severity="error",
            ))
        if changes.amount is not None:
            self._check_amount(changes.amount, issues)
        if changes.transaction_date is not None:
            self._check_date(changes.transaction_date, issues)
        self._check_note(changes.note, issues)

        semantic = None
        if not any(i.severity == "error" for i in issues):
            semantic = self._validate_semantic(changes.amount, changes.transaction_date)
        return self._build_result(issues, semantic)

    def validate_adjustment_amount(self, raw: Any, operation: str) -> int:
        """
        Parse the amount of a balance operation.

        "add" needs a positive amount; "set" takes any integer, including
        zero and negative targets.

        Raises:
            ValidationError: If the amount is unusable
        """
        amount = parse_amount(raw)
        if operation == "add" and amount <= 0:
            raise _single_issue_error(
                "amount", "invalid_value",
                "Amount to add must be greater than zero",
                suggested_fix="Use 'set balance' to lower the balance",
            )
        return amount

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a member-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if not result.schema_valid:
            lines.append("❌ This entry can't be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines).strip()
