"""
Calendar month arithmetic for the statement window.

All functions are pure. Stepping saturates the day to the length of the
target month, so Jan 31 + 1 month is the last day of February.
"""

import calendar
from datetime import date


def step_month(reference: date, step: int) -> date:
    """Move `reference` by `step` months (negative steps go back)."""
    month_index = reference.year * 12 + (reference.month - 1) + step
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(reference.day, last_day))


def month_window(reference: date) -> tuple[date, date]:
    """First and last day of the month containing `reference`."""
    last_day = calendar.monthrange(reference.year, reference.month)[1]
    return (
        reference.replace(day=1),
        reference.replace(day=last_day),
    )


def previous_month(reference: date) -> date:
    return step_month(reference, -1)


def next_month(reference: date) -> date:
    return step_month(reference, 1)


def month_label(reference: date) -> str:
    """e.g. "2024-05"."""
    return f"{reference.year:04d}-{reference.month:02d}"
