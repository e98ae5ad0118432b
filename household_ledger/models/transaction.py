"""
Core Data Models for the Household Ledger

These models define the strict schemas for every ledger entry and for the
derived views (statements, summaries) built from them.

SIGN CONVENTION:
- A positive amount is an EXPENSE (it reduces the balance)
- A negative amount is INCOME (it increases the balance)
- The balance contribution of a transaction is therefore -amount

DESIGN DECISION: Amounts are plain integers in the smallest currency unit.
There is no floating point anywhere in the ledger, and strict mode stops
pydantic from quietly coercing floats or strings into amounts.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """
    What produced a ledger entry.

    DESIGN DECISION: Synthetic adjustment entries are tagged explicitly
    instead of being recognised by their note text. The note is only
    used for display and for cleaning up entries written before the tag
    existed.
    """
    USER = "user"                        # Entered by a household member
    BALANCE_ADDED = "balance_added"      # Created by "add to balance"
    INITIAL_BALANCE = "initial_balance"  # Created by "set balance"

    @property
    def is_adjustment(self) -> bool:
        return self is not EntryKind.USER


# Reserved notes carried by synthetic entries
BALANCE_ADDED_NOTE = "balance-added"
INITIAL_BALANCE_NOTE = "initial-asset-balance"
# Written by an older monthly-budget feature; only ever deleted now
LEGACY_BUDGET_NOTE = "monthly-budget"

RESERVED_NOTES = frozenset({
    BALANCE_ADDED_NOTE,
    INITIAL_BALANCE_NOTE,
    LEGACY_BUDGET_NOTE,
})


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class TransactionDraft(BaseModel):
    """
    A transaction that has not been stored yet.

    The store assigns the id and the insertion timestamp.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Owning household/group"
    )
    amount: int = Field(
        ...,
        strict=True,
        description="Signed amount: positive = expense, negative = income"
    )
    transaction_date: date = Field(
        ...,
        description="Calendar date of the entry"
    )
    note: str = Field(
        default="",
        max_length=500,
        description="Free-text label"
    )
    attachment_ref: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Opaque reference to an externally stored receipt"
    )
    created_by: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Opaque reference to the member who recorded it"
    )
    kind: EntryKind = Field(
        default=EntryKind.USER,
        description="User entry or synthetic adjustment"
    )

    @property
    def is_adjustment(self) -> bool:
        return self.kind.is_adjustment


class Transaction(TransactionDraft):
    """
    A stored ledger entry.

    CRITICAL: Instances are treated as immutable. Changes go through the
    store's update operation, which returns a fresh instance.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="Insertion timestamp, used to order same-day entries"
    )

    @property
    def is_income(self) -> bool:
        return self.amount < 0

    @property
    def balance_effect(self) -> int:
        """How much this entry moves the displayed balance."""
        return -self.amount


class TransactionUpdate(BaseModel):
    """
    Partial edit of a stored transaction.

    Only fields that are set are changed. The amount is applied as a
    magnitude: the stored entry keeps its income/expense classification.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[int] = Field(default=None, strict=True)
    transaction_date: Optional[date] = None
    note: Optional[str] = Field(default=None, max_length=500)
    attachment_ref: Optional[str] = Field(default=None, max_length=1000)

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set

    def signed_amount_for(self, original: Transaction) -> Optional[int]:
        """Apply the edited magnitude with the original sign class."""
        if self.amount is None:
            return None
        magnitude = abs(self.amount)
        return -magnitude if original.is_income else magnitude


# =============================================================================
# AGGREGATION MODELS
# =============================================================================

class AmountTotals(BaseModel):
    """Income and expense sums for a set of transactions (both non-negative)."""

    total_income: int = Field(default=0, ge=0)
    total_expense: int = Field(default=0, ge=0)

    @property
    def amount_sum(self) -> int:
        """Raw sum of signed amounts."""
        return self.total_expense - self.total_income

    @property
    def balance(self) -> int:
        return self.total_income - self.total_expense


class AnnotatedRow(BaseModel):
    """One statement row with its running balance."""

    transaction: Transaction
    is_income: bool
    abs_amount: int = Field(ge=0)
    running_balance: int


class Statement(BaseModel):
    """
    A month-windowed view of the ledger.

    closing_balance = opening_balance + total_income - total_expense,
    which is also the running balance of the last row when there is one.
    """

    group_id: str
    window_start: date
    window_end: date
    opening_balance: int
    rows: list[AnnotatedRow] = Field(default_factory=list)
    total_income: int = Field(default=0, ge=0)
    total_expense: int = Field(default=0, ge=0)
    closing_balance: int

    @model_validator(mode='after')
    def validate_window(self) -> 'Statement':
        if self.window_end < self.window_start:
            raise ValueError("Window end cannot be before window start")
        return self


class MonthSummary(BaseModel):
    """
    Cumulative headline figures through the end of a month.

    Not window-scoped: income and expense cover all history up to the
    month end, so balance matches the statement's closing balance.
    """

    group_id: str
    through: date = Field(
        ...,
        description="Last day included in the summary"
    )
    total_income: int = Field(ge=0)
    total_expense: int = Field(ge=0)
    balance: int


class AdjustmentResult(BaseModel):
    """Outcome of an "add to balance" or "set balance" operation."""

    group_id: str
    transaction_id: UUID = Field(
        ...,
        description="The synthetic entry that was inserted"
    )
    kind: EntryKind
    amount: int = Field(
        ...,
        description="Signed amount of the synthetic entry"
    )
    removed_count: int = Field(
        default=0,
        ge=0,
        description="Synthetic entries deleted first (set balance only)"
    )
    new_balance: int = Field(
        ...,
        description="All-time display balance after the operation"
    )
