"""
Balance Aggregator

Turns stored transactions into what the statement page shows:
- an opening balance carried forward from everything before the window
- the window's rows in ledger order, each with its running balance
- income/expense totals for the window and for all history

DESIGN DECISION: History is summed by aggregate queries in the store.
Only the rows inside the window are ever loaded, so a long-lived
household doesn't make every page view slower.

Synthetic adjustment entries are dated at the sentinel date, before any
month a member can open, so they always land in the opening balance.
"""

from collections.abc import Iterable
from datetime import date

from household_ledger.ledger.window import month_window
from household_ledger.models.transaction import (
    AnnotatedRow,
    MonthSummary,
    Statement,
    Transaction,
)
from household_ledger.services.storage import TransactionStoreInterface


def annotate_rows(
    transactions: Iterable[Transaction],
    opening_balance: int,
) -> tuple[list[AnnotatedRow], int, int]:
    """
    Fold running balances over transactions that are already in ledger order.

    Returns:
        (rows, total_income, total_expense)
    """
    rows = []
    running = opening_balance
    total_income = 0
    total_expense = 0

    for transaction in transactions:
        running += transaction.balance_effect
        abs_amount = abs(transaction.amount)
        if transaction.is_income:
            total_income += abs_amount
        else:
            total_expense += abs_amount
        rows.append(AnnotatedRow(
            transaction=transaction,
            is_income=transaction.is_income,
            abs_amount=abs_amount,
            running_balance=running,
        ))

    return rows, total_income, total_expense


class BalanceAggregator:
    """Read-only balance views over a transaction store."""

    def __init__(self, store: TransactionStoreInterface):
        self._store = store

    async def opening_balance(self, group_id: str, window_start: date) -> int:
        """Balance of everything dated strictly before `window_start`."""
        totals = await self._store.totals(group_id, before=window_start)
        return totals.balance

    async def window_rows(
        self,
        group_id: str,
        window_start: date,
        window_end: date,
        opening_balance: int = 0,
    ) -> tuple[list[AnnotatedRow], int, int]:
        """
        Annotated rows of the window plus its income and expense totals.

        Running balances start from `opening_balance`.
        """
        transactions = await self._store.query(
            group_id,
            date_from=window_start,
            date_to=window_end,
        )
        return annotate_rows(transactions, opening_balance)

    async def month_summary(self, group_id: str, reference_date: date) -> MonthSummary:
        """
        Cumulative income, expense and balance through the end of the
        reference month.
        """
        _, window_end = month_window(reference_date)
        totals = await self._store.totals(group_id, through=window_end)
        return MonthSummary(
            group_id=group_id,
            through=window_end,
            total_income=totals.total_income,
            total_expense=totals.total_expense,
            balance=totals.balance,
        )

    async def statement(self, group_id: str, reference_date: date) -> Statement:
        """The month statement containing `reference_date`."""
        window_start, window_end = month_window(reference_date)
        opening = await self.opening_balance(group_id, window_start)
        rows, total_income, total_expense = await self.window_rows(
            group_id,
            window_start,
            window_end,
            opening_balance=opening,
        )
        return Statement(
            group_id=group_id,
            window_start=window_start,
            window_end=window_end,
            opening_balance=opening,
            rows=rows,
            total_income=total_income,
            total_expense=total_expense,
            closing_balance=opening + total_income - total_expense,
        )
