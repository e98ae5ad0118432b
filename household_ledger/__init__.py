"""
Household Ledger - Source Package

A shared expense ledger for a household: members record income and
expenses, read a month-by-month statement with a running balance, and
adjust the balance directly when it drifts from reality.

DESIGN PRINCIPLES:
1. Member entries are never rewritten by the system
2. Fail early, fail visibly
3. No silent corrections
4. Every change must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
