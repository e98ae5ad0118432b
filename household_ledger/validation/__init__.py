"""Input validation package."""

from household_ledger.validation.validator import (
    TransactionValidator,
    ValidationError,
    parse_amount,
    parse_date,
)

__all__ = [
    "TransactionValidator",
    "ValidationError",
    "parse_amount",
    "parse_date",
]
