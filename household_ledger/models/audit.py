"""
Audit Models for the Household Ledger

Every change to a household's ledger is logged for audit purposes.
This provides:
1. Traceability of who changed the balance and how
2. Debugging information when a balance looks wrong
3. Ability to reconstruct how the ledger reached its current state

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from household_ledger.models.transaction import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Transaction CRUD
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Balance adjustments
    BALANCE_ADDED = "balance_added"
    BALANCE_SET = "balance_set"

    # Reads
    STATEMENT_VIEWED = "statement_viewed"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    STORE_ERROR = "store_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context
    group_id: Optional[str] = Field(
        default=None,
        description="Household/group the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'statement')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one UI action)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "group_id": self.group_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def details_json(self) -> str:
        return json.dumps(self.details, default=str) if self.details else ""


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.balance_set(group_id, target, ...)
        event = AuditEventBuilder.transaction_deleted(group_id, txn_id, ...)
    """

    @staticmethod
    def transaction_created(
        group_id: str,
        transaction_id: UUID,
        amount: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        kind = "income" if amount < 0 else "expense"
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            group_id=group_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Recorded {kind} of {abs(amount)}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        group_id: str,
        transaction_id: UUID,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            group_id=group_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Edited transaction ({', '.join(sorted(changes))})",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        group_id: str,
        transaction_id: UUID,
        amount: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            group_id=group_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Deleted transaction",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def balance_added(
        group_id: str,
        transaction_id: UUID,
        added: int,
        new_balance: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADDED,
            group_id=group_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Added {added} to balance (now {new_balance})",
            details={"added": added, "new_balance": new_balance},
            is_user_action=True,
        )

    @staticmethod
    def balance_set(
        group_id: str,
        transaction_id: UUID,
        target: int,
        adjustment: int,
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_SET,
            group_id=group_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Balance set to {target}",
            details={
                "target": target,
                "adjustment_amount": adjustment,
                "removed_adjustments": removed,
            },
            is_user_action=True,
        )

    @staticmethod
    def statement_viewed(
        group_id: str,
        window: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_VIEWED,
            severity=AuditSeverity.DEBUG,
            group_id=group_id,
            entity_type="statement",
            correlation_id=correlation_id,
            description=f"Statement for {window} with {row_count} rows",
            details={"window": window, "row_count": row_count},
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        group_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            group_id=group_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={"operation": operation, "issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        group_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            group_id=group_id,
            correlation_id=correlation_id,
            description=f"Store error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
