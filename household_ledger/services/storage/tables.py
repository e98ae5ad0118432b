"""
Relational schema for the ledger.

Three tables:
- ledger_groups: one row per household. Doubles as the per-group write
  lock and holds the materialized sum of all amounts of the group.
- ledger_transactions: the signed entries themselves.
- ledger_audit_events: append-only audit trail.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from household_ledger.models.transaction import EntryKind


class Base(DeclarativeBase):
    pass


class LedgerGroupRow(Base):
    __tablename__ = "ledger_groups"

    group_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    # Always equals SUM(amount) over the group's transactions. Updated in
    # the same database transaction as every write.
    amount_sum: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TransactionRow(Base):
    __tablename__ = "ledger_transactions"

    # Insertion sequence; last tie-breaker for same-day, same-instant rows
    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    group_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("ledger_groups.group_id"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    kind: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=EntryKind.USER.value,
    )

    __table_args__ = (
        Index("ix_ledger_transactions_group_date", "group_id", "transaction_date"),
        CheckConstraint(
            "kind IN ({})".format(", ".join(f"'{k.value}'" for k in EntryKind)),
            name="ck_ledger_transactions_kind",
        ),
    )


class AuditEventRow(Base):
    __tablename__ = "ledger_audit_events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_user_action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
