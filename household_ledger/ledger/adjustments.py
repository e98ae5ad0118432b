"""
Adjustment Engine

The two ways a member can change the balance without entering a real
transaction:

1. ADD: "add N to the balance"
   Inserts one synthetic income entry of N. Calling it twice adds twice.

2. SET: "make the balance exactly N"
   Deletes every synthetic entry of the group, sums what is left and
   inserts one synthetic entry that makes up the difference. Calling it
   twice leaves the same single entry.

DESIGN DECISION: Member transactions are never touched. Both operations
only insert or delete synthetic entries, dated at the sentinel date so
they fold into every statement's opening balance.

CRITICAL: SET is a read-modify-write. The delete, the sum and the insert
run in one store transaction that holds the group lock, so a concurrent
write can't slip in between the sum and the insert. If anything fails,
nothing is committed. There are no retries: a retried half-applied
adjustment could be applied twice.
"""

from datetime import date
from typing import Any, Optional

import structlog

from household_ledger.models.transaction import (
    BALANCE_ADDED_NOTE,
    INITIAL_BALANCE_NOTE,
    AdjustmentResult,
    EntryKind,
    TransactionDraft,
)
from household_ledger.services.storage import TransactionStoreInterface
from household_ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


class AdjustmentEngine:
    """Applies balance adjustments to a group atomically."""

    def __init__(
        self,
        store: TransactionStoreInterface,
        validator: Optional[TransactionValidator] = None,
        sentinel_date: Optional[date] = None,
    ):
        self._store = store
        self._validator = validator or TransactionValidator()
        self._sentinel_date = sentinel_date or self._validator.sentinel_date

    @property
    def sentinel_date(self) -> date:
        return self._sentinel_date

    def _synthetic_draft(
        self,
        group_id: str,
        amount: int,
        kind: EntryKind,
        created_by: Optional[str],
    ) -> TransactionDraft:
        note = BALANCE_ADDED_NOTE if kind is EntryKind.BALANCE_ADDED else INITIAL_BALANCE_NOTE
        return TransactionDraft(
            group_id=group_id,
            amount=amount,
            transaction_date=self._sentinel_date,
            note=note,
            kind=kind,
            created_by=created_by,
        )

    async def add_balance(
        self,
        group_id: str,
        amount: Any,
        created_by: Optional[str] = None,
    ) -> AdjustmentResult:
        """
        Raise the balance by `amount`.

        Raises:
            ValidationError: If amount isn't a positive whole number
            StoreError: If the write fails (nothing is committed)
        """
        value = self._validator.validate_adjustment_amount(amount, "add")

        async with self._store.atomic(group_id) as tx:
            draft = self._synthetic_draft(group_id, -value, EntryKind.BALANCE_ADDED, created_by)
            transaction_id = await tx.insert(draft)
            new_balance = -(await tx.amount_sum(group_id))

        logger.info(
            "balance_added",
            group_id=group_id,
            added=value,
            new_balance=new_balance,
        )
        return AdjustmentResult(
            group_id=group_id,
            transaction_id=transaction_id,
            kind=EntryKind.BALANCE_ADDED,
            amount=-value,
            new_balance=new_balance,
        )

    async def set_balance(
        self,
        group_id: str,
        amount: Any,
        created_by: Optional[str] = None,
    ) -> AdjustmentResult:
        """
        Force the balance to equal `amount`.

        Zero and negative targets are allowed.

        Raises:
            ValidationError: If amount isn't a whole number
            StoreError: If any step fails (nothing is committed)
        """
        target = self._validator.validate_adjustment_amount(amount, "set")

        async with self._store.atomic(group_id) as tx:
            removed = await tx.delete_adjustments(group_id)
            actual_sum = await tx.amount_sum(group_id)
            adjustment = -target - actual_sum
            draft = self._synthetic_draft(group_id, adjustment, EntryKind.INITIAL_BALANCE, created_by)
            transaction_id = await tx.insert(draft)
            new_balance = -(await tx.amount_sum(group_id))

        logger.info(
            "balance_set",
            group_id=group_id,
            target=target,
            adjustment=adjustment,
            removed=removed,
        )
        return AdjustmentResult(
            group_id=group_id,
            transaction_id=transaction_id,
            kind=EntryKind.INITIAL_BALANCE,
            amount=adjustment,
            removed_count=removed,
            new_balance=new_balance,
        )
