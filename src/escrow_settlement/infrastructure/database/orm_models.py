"""SQLAlchemy 2.0 ORM models for the escrow settlement engine.

Three tables:
    1. escrow_transactions  — The escrow aggregate, one row per transaction.
    2. escrow_events        — Append-only audit log of every change.
    3. platform_config      — Single-row fee schedule and default periods.

Design decisions:
    - UUIDs as primary keys (generic Uuid type, native on PostgreSQL).
    - Integer minor units for money (no floating point rounding errors).
    - Conditions, status history and shipping details as JSON columns
      (JSONB on PostgreSQL); they are only read and written as a whole.
    - ``version`` is an optimistic-concurrency counter: every UPDATE is
      issued with ``WHERE version = :expected`` and bumps it by one.
    - CHECK constraint on status to prevent invalid enum values at DB level.
    - escrow_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from escrow_settlement.domain.enums import EscrowStatus

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. escrow_transactions
# ---------------------------------------------------------------------------
class EscrowTransactionRecord(Base):
    """Row form of an EscrowTransaction."""

    __tablename__ = "escrow_transactions"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Parties ---
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_destination_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Connected account that receives the transfer and issues the payout",
    )

    # --- Item ---
    item_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    item_type: Mapped[str] = mapped_column(String(32), nullable=False)

    # --- Financials (minor units) ---
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rail_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    seller_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    dispute_period_days: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.PENDING_PAYMENT.value,
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )
    status_history: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)

    # --- Settlement conditions ---
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
    all_conditions_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonType, nullable=False, default=dict
    )

    # --- Payment linkage (write-once) ---
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refunded_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # --- Shipping & disputes ---
    shipping: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_resolution: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    dispute_period_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Settlement claim & concurrency ---
    settlement_claim: Mapped[str | None] = mapped_column(String(64), nullable=True)
    settlement_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s.value}'" for s in EscrowStatus) + ")",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint("seller_amount > 0", name="ck_escrow_positive_seller_amount"),
        Index("idx_escrow_status_created", "status", "created_at"),
        Index("idx_escrow_buyer", "buyer_id"),
        Index("idx_escrow_seller", "seller_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowTransactionRecord id={self.id} status={self.status} "
            f"amount={self.amount} {self.currency} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEventRecord(Base):
    """Immutable audit record of a change to a transaction.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrow_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    triggered_by: Mapped[str] = mapped_column(String(20), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Insertion order within one save, ties broken on equal timestamps",
    )

    __table_args__ = (
        Index("idx_event_transaction", "transaction_id", "created_at"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<EscrowEventRecord id={self.id} type={self.event_type} txn={self.transaction_id}>"


# ---------------------------------------------------------------------------
# 3. platform_config
# ---------------------------------------------------------------------------
class PlatformConfigRecord(Base):
    """Single-row platform configuration (id is always 1)."""

    __tablename__ = "platform_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    platform_fee_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    platform_fee_fixed: Mapped[int] = mapped_column(Integer, nullable=False)
    rail_fee_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    rail_fee_fixed: Mapped[int] = mapped_column(Integer, nullable=False)
    default_dispute_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    default_auto_release_days: Mapped[int] = mapped_column(Integer, nullable=False)
    default_inspection_days: Mapped[int] = mapped_column(Integer, nullable=False)
    min_transaction_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_transaction_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    requires_tracking_above: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
