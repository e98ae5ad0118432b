"""Ledger reconciliation: statement windows, balances and adjustments."""

from household_ledger.ledger.adjustments import AdjustmentEngine
from household_ledger.ledger.aggregator import BalanceAggregator, annotate_rows
from household_ledger.ledger.window import (
    month_label,
    month_window,
    next_month,
    previous_month,
    step_month,
)

__all__ = [
    "AdjustmentEngine",
    "BalanceAggregator",
    "annotate_rows",
    "month_label",
    "month_window",
    "next_month",
    "previous_month",
    "step_month",
]
