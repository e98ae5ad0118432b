"""
Main Orchestrator for the Household Ledger

This module ties together all the components and defines the operations
the UI calls:
1. Statement (month → opening balance → annotated rows → totals)
2. Balance adjustments (add N / set to N)
3. Transaction entry, edit and deletion

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written until the input passes validation
- Balance adjustments only go through the Adjustment Engine
- Every change is audited, and failures are audited before re-raising

Store errors are never retried here. They propagate unchanged so the UI
can tell the member the operation failed and nothing was saved.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

import pydantic

from household_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from household_ledger.config import get_settings
from household_ledger.ledger import AdjustmentEngine, BalanceAggregator, month_label
from household_ledger.models.audit import AuditEvent
from household_ledger.models.transaction import (
    MonthSummary,
    Statement,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
)
from household_ledger.models.validation import ValidationIssue
from household_ledger.services.storage import (
    LedgerDatabase,
    NotFoundError,
    SqlAuditStorage,
    SqlTransactionStore,
    StoreError,
    TransactionStoreInterface,
)
from household_ledger.validation import (
    TransactionValidator,
    ValidationError,
    parse_amount,
    parse_date,
)


def _issues_from_pydantic(error: pydantic.ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(part) for part in err["loc"]) or "input",
            issue_type=err["type"],
            message=err["msg"],
            severity="error",
        )
        for err in error.errors()
    ]


class LedgerService:
    """
    The ledger API used by the UI.

    All amounts are integers in the smallest currency unit. Raw form
    values are accepted for amounts and dates and parsed here.
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        validator: Optional[TransactionValidator] = None,
        aggregator: Optional[BalanceAggregator] = None,
        adjustment_engine: Optional[AdjustmentEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator or TransactionValidator()
        self._aggregator = aggregator or BalanceAggregator(store)
        self._adjustments = adjustment_engine or AdjustmentEngine(
            store,
            validator=self._validator,
        )
        self._audit_logger = audit_logger

    @property
    def validator(self) -> TransactionValidator:
        return self._validator

    # -------------------------------------------------------------------------
    # Audit helpers
    # -------------------------------------------------------------------------

    async def _reject(
        self,
        operation: str,
        error: ValidationError,
        group_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                operation=operation,
                issues=error.issues_as_dicts(),
                group_id=group_id,
                correlation_id=correlation_id,
            )

    async def _store_failed(
        self,
        operation: str,
        error: StoreError,
        group_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger and not isinstance(error, NotFoundError):
            await self._audit_logger.log_store_error(
                operation=operation,
                error_message=str(error),
                group_id=group_id,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Statement views
    # -------------------------------------------------------------------------

    async def get_statement(
        self,
        group_id: str,
        reference_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> Statement:
        """The month statement containing `reference_date`."""
        correlation_id = correlation_id or create_correlation_id()

        try:
            statement = await self._aggregator.statement(group_id, reference_date)
        except StoreError as e:
            await self._store_failed("get_statement", e, group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_statement_viewed(
                group_id=group_id,
                window=month_label(reference_date),
                row_count=len(statement.rows),
                correlation_id=correlation_id,
            )
        return statement

    async def get_month_summary(
        self,
        group_id: str,
        reference_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> MonthSummary:
        """Cumulative income, expense and balance through the reference month."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            return await self._aggregator.month_summary(group_id, reference_date)
        except StoreError as e:
            await self._store_failed("get_month_summary", e, group_id, correlation_id)
            raise

    async def get_current_balance(
        self,
        group_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """All-time display balance, read from the group's running total."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            return -(await self._store.amount_sum(group_id))
        except StoreError as e:
            await self._store_failed("get_current_balance", e, group_id, correlation_id)
            raise

    # -------------------------------------------------------------------------
    # Balance adjustments
    # -------------------------------------------------------------------------

    async def add_balance(
        self,
        group_id: str,
        amount: Any,
        created_by: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Add `amount` to the balance.

        Returns:
            The new all-time balance

        Raises:
            ValidationError: If amount isn't a positive whole number
            StoreError: If the write fails
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._adjustments.add_balance(group_id, amount, created_by=created_by)
        except ValidationError as e:
            await self._reject("add_balance", e, group_id, correlation_id)
            raise
        except StoreError as e:
            await self._store_failed("add_balance", e, group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_balance_added(
                group_id=group_id,
                transaction_id=result.transaction_id,
                added=-result.amount,
                new_balance=result.new_balance,
                correlation_id=correlation_id,
            )
        return result.new_balance

    async def set_balance(
        self,
        group_id: str,
        amount: Any,
        created_by: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Make the balance equal `amount`.

        Returns:
            The new all-time balance (equal to `amount`)

        Raises:
            ValidationError: If amount isn't a whole number
            StoreError: If any step fails; the ledger is left unchanged
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._adjustments.set_balance(group_id, amount, created_by=created_by)
        except ValidationError as e:
            await self._reject("set_balance", e, group_id, correlation_id)
            raise
        except StoreError as e:
            await self._store_failed("set_balance", e, group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_balance_set(
                group_id=group_id,
                transaction_id=result.transaction_id,
                target=result.new_balance,
                adjustment=result.amount,
                removed=result.removed_count,
                correlation_id=correlation_id,
            )
        return result.new_balance

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        group_id: str,
        amount: Any,
        transaction_date: Any,
        note: str = "",
        attachment_ref: Optional[str] = None,
        created_by: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a member entry.

        `amount` is signed: positive for an expense, negative for income.

        Raises:
            ValidationError: If the entry fails validation (nothing is written)
            StoreError: If the write fails
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            try:
                draft = TransactionDraft(
                    group_id=group_id,
                    amount=parse_amount(amount),
                    transaction_date=parse_date(transaction_date),
                    note=note or "",
                    attachment_ref=attachment_ref,
                    created_by=created_by,
                )
            except pydantic.ValidationError as e:
                raise ValidationError("Invalid transaction", _issues_from_pydantic(e)) from e

            result = self._validator.validate_draft(draft)
            if result.has_errors:
                raise ValidationError.from_result(result, "create_transaction")
        except ValidationError as e:
            await self._reject("create_transaction", e, group_id, correlation_id)
            raise

        try:
            transaction_id = await self._store.insert(draft)
            transaction = await self._store.get(transaction_id)
        except StoreError as e:
            await self._store_failed("create_transaction", e, group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                group_id=group_id,
                transaction_id=transaction_id,
                amount=draft.amount,
                correlation_id=correlation_id,
            )
        return transaction

    async def update_transaction(
        self,
        transaction_id: UUID,
        amount: Any = None,
        transaction_date: Any = None,
        note: Optional[str] = None,
        attachment_ref: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a member entry. Arguments left as None are unchanged. An empty
        `attachment_ref` removes the receipt reference.

        The amount is taken as a magnitude: an expense stays an expense and
        an income stays an income whatever sign is entered.

        Raises:
            NotFoundError: If the transaction doesn't exist
            ValidationError: If the edit fails validation
            StoreError: If the write fails
        """
        correlation_id = correlation_id or create_correlation_id()

        fields: dict[str, Any] = {}
        try:
            if amount is not None:
                fields["amount"] = parse_amount(amount)
            if transaction_date is not None:
                fields["transaction_date"] = parse_date(transaction_date)
            if note is not None:
                fields["note"] = note
            if attachment_ref is not None:
                fields["attachment_ref"] = attachment_ref.strip() or None
            try:
                changes = TransactionUpdate(**fields)
            except pydantic.ValidationError as e:
                raise ValidationError("Invalid changes", _issues_from_pydantic(e)) from e
        except ValidationError as e:
            await self._reject("update_transaction", e, None, correlation_id)
            raise

        original = await self.get_transaction(transaction_id)
        group_id = original.group_id

        try:
            async with self._store.atomic(group_id) as tx:
                current = await tx.get(transaction_id)
                if current is None:
                    raise NotFoundError(f"Transaction not found: {transaction_id}")

                result = self._validator.validate_update(current, changes)
                if result.has_errors:
                    raise ValidationError.from_result(result, "update_transaction")

                stored_changes = changes
                if changes.amount is not None:
                    stored_changes = TransactionUpdate(**{
                        **changes.model_dump(exclude_unset=True),
                        "amount": changes.signed_amount_for(current),
                    })
                updated = await tx.update(transaction_id, stored_changes)
        except ValidationError as e:
            await self._reject("update_transaction", e, group_id, correlation_id)
            raise
        except StoreError as e:
            await self._store_failed("update_transaction", e, group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                group_id=group_id,
                transaction_id=transaction_id,
                changes=stored_changes.model_dump(mode="json", exclude_unset=True),
                correlation_id=correlation_id,
            )
        return updated

    async def delete_transaction(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an entry. Synthetic adjustment entries can be deleted too.

        Raises:
            NotFoundError: If the transaction doesn't exist
            StoreError: If the write fails
        """
        correlation_id = correlation_id or create_correlation_id()

        original = await self.get_transaction(transaction_id)
        try:
            async with self._store.atomic(original.group_id) as tx:
                if not await tx.delete(transaction_id):
                    raise NotFoundError(f"Transaction not found: {transaction_id}")
        except StoreError as e:
            await self._store_failed("delete_transaction", e, original.group_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                group_id=original.group_id,
                transaction_id=transaction_id,
                amount=original.amount,
                correlation_id=correlation_id,
            )

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        """
        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        transaction = await self._store.get(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def list_transactions(
        self,
        group_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        adjustments_only: bool = False,
    ) -> list[Transaction]:
        """A group's transactions in ledger order."""
        return await self._store.query(
            group_id,
            date_from=date_from,
            date_to=date_to,
            adjustments_only=adjustments_only,
        )

    async def get_audit_trail(
        self,
        group_id: str,
        limit: int = 50,
    ) -> list[AuditEvent]:
        """Most recent audit events of a group, newest first."""
        if not self._audit_logger or not self._audit_logger.storage:
            return []
        return await self._audit_logger.storage.get_events_for_group(group_id, limit=limit)


def create_ledger_service(
    database_url: Optional[str] = None,
    use_audit_storage: bool = True,
) -> tuple[LedgerService, LedgerDatabase]:
    """
    Factory function to create all application components.

    Args:
        database_url: SQLAlchemy URL; defaults to LEDGER_DB_URL.
        use_audit_storage: Persist audit events to the database.
                    Set to False to only log them locally.

    Returns:
        (ledger_service, database)
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    database = LedgerDatabase(database_url)
    database.create_schema()

    store = SqlTransactionStore(database)
    if use_audit_storage:
        audit_logger = AuditLogger(SqlAuditStorage(database))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    service = LedgerService(
        store=store,
        validator=TransactionValidator(settings.ledger),
        audit_logger=audit_logger,
    )
    return service, database
