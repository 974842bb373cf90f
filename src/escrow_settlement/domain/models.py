"""Escrow aggregate and its nested value types.

The transaction aggregate carries its condition list, status history and
shipping details as first-class values. They are serialized to plain dicts
only at the storage boundary (to_dict / from_dict), never handled as
opaque strings inside the engine.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from escrow_settlement.domain.enums import (
    TERMINAL_STATUSES,
    Actor,
    Combinator,
    EscrowStatus,
    EventType,
    ItemType,
)

DEFAULT_GROUP = "default"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Returns None for None/empty input. Raises ValueError/TypeError for
    anything else that is not a valid instant.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise TypeError(f"Expected an ISO-8601 timestamp, got {type(value).__name__}")


def format_instant(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Settlement conditions
# ---------------------------------------------------------------------------
@dataclass
class SettlementCondition:
    """One settlement rule attached to a transaction.

    Attributes:
        type: ConditionType value. Unknown strings are kept and never met.
        description: Human-readable rule, reported while the condition blocks release.
        priority: Presentation order only, never short-circuits evaluation.
        combinator: ALL_OF (required) or ANY_OF (member of ``group``).
        group: Name of the any-of group this condition belongs to.
        config: Type-specific settings (tracking number, deadlines, milestones...).
        is_met: Outcome of the last evaluation; never flips back to False.
        met_at: First instant the condition was met.
    """

    type: str
    description: str
    priority: int = 1
    combinator: Combinator = Combinator.ANY_OF
    group: str = DEFAULT_GROUP
    config: dict[str, Any] = field(default_factory=dict)
    is_met: bool = False
    met_at: datetime | None = None

    @property
    def required(self) -> bool:
        return self.combinator == Combinator.ALL_OF

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "description": self.description,
            "priority": self.priority,
            "combinator": self.combinator.value,
            "group": self.group,
            "config": dict(self.config),
            "is_met": self.is_met,
            "met_at": format_instant(self.met_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int = 0) -> SettlementCondition:
        """Build a condition from a stored or caller-supplied dict.

        Documents without an explicit ``combinator`` fall back to the
        ``required`` flag: True means all-of, absent or False means any-of.
        """
        combinator = data.get("combinator")
        if combinator is None:
            combinator = Combinator.ALL_OF if data.get("required") else Combinator.ANY_OF
        return cls(
            type=str(data["type"]),
            description=data.get("description") or str(data["type"]),
            priority=int(data.get("priority") or index + 1),
            combinator=Combinator(combinator),
            group=data.get("group") or DEFAULT_GROUP,
            config=dict(data.get("config") or {}),
            is_met=bool(data.get("is_met", False)),
            met_at=parse_instant(data.get("met_at")),
        )


# ---------------------------------------------------------------------------
# History, shipping and audit values
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class StatusHistoryEntry:
    """One append-only entry of a transaction's status history."""

    status: EscrowStatus
    timestamp: datetime
    triggered_by: Actor
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": format_instant(self.timestamp),
            "triggered_by": self.triggered_by.value,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusHistoryEntry:
        return cls(
            status=EscrowStatus(data["status"]),
            timestamp=parse_instant(data["timestamp"]),
            triggered_by=Actor(data["triggered_by"]),
            note=data.get("note", ""),
        )


@dataclass
class ShippingDetails:
    """Shipment information supplied by the seller and the carrier."""

    carrier: str
    tracking_number: str
    tracking_url: str | None = None
    estimated_delivery: datetime | None = None
    shipped_at: datetime | None = None
    actual_delivery: datetime | None = None
    last_carrier_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "estimated_delivery": format_instant(self.estimated_delivery),
            "shipped_at": format_instant(self.shipped_at),
            "actual_delivery": format_instant(self.actual_delivery),
            "last_carrier_status": self.last_carrier_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShippingDetails:
        return cls(
            carrier=data.get("carrier", ""),
            tracking_number=data.get("tracking_number", ""),
            tracking_url=data.get("tracking_url"),
            estimated_delivery=parse_instant(data.get("estimated_delivery")),
            shipped_at=parse_instant(data.get("shipped_at")),
            actual_delivery=parse_instant(data.get("actual_delivery")),
            last_carrier_status=data.get("last_carrier_status"),
        )


@dataclass(frozen=True)
class EscrowEvent:
    """Immutable audit record. Written once, never updated or deleted."""

    transaction_id: uuid.UUID
    event_type: EventType
    description: str
    triggered_by: Actor
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)


# ---------------------------------------------------------------------------
# Platform configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class PlatformConfig:
    """Fee schedule, default periods and transaction bounds.

    Amounts are minor currency units. Transactions copy what they need at
    creation time, so edits only affect transactions created afterwards.
    """

    platform_fee_percentage: float = 2.5
    platform_fee_fixed: int = 30
    rail_fee_percentage: float = 2.9
    rail_fee_fixed: int = 30
    default_dispute_period_days: int = 7
    default_auto_release_days: int = 14
    default_inspection_days: int = 3
    min_transaction_amount: int = 100
    max_transaction_amount: int = 1_000_000
    requires_tracking_above: int = 5000

    @classmethod
    def from_settings(cls, settings: Any) -> PlatformConfig:
        return cls(
            platform_fee_percentage=settings.platform_fee_percentage,
            platform_fee_fixed=settings.platform_fee_fixed,
            rail_fee_percentage=settings.rail_fee_percentage,
            rail_fee_fixed=settings.rail_fee_fixed,
            default_dispute_period_days=settings.default_dispute_period_days,
            default_auto_release_days=settings.default_auto_release_days,
            default_inspection_days=settings.default_inspection_days,
            min_transaction_amount=settings.min_transaction_amount,
            max_transaction_amount=settings.max_transaction_amount,
            requires_tracking_above=settings.requires_tracking_above,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def updated(self, **changes: Any) -> PlatformConfig:
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# ---------------------------------------------------------------------------
# The aggregate
# ---------------------------------------------------------------------------
@dataclass
class EscrowTransaction:
    """The escrow aggregate: money, linkage ids, lifecycle and conditions."""

    buyer_id: str
    seller_id: str
    seller_destination_id: str
    item_description: str
    item_type: ItemType
    amount: int
    platform_fee: int
    rail_fee: int
    seller_amount: int
    currency: str
    dispute_period_days: int
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: EscrowStatus = EscrowStatus.PENDING_PAYMENT
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    conditions: list[SettlementCondition] = field(default_factory=list)
    all_conditions_met: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    # --- Payment linkage (write-once) ---
    payment_intent_id: str | None = None
    charge_id: str | None = None
    transfer_id: str | None = None
    payout_id: str | None = None
    refund_id: str | None = None
    refunded_amount: int | None = None

    # --- Shipping & disputes ---
    shipping: ShippingDetails | None = None
    dispute_reason: str | None = None
    disputed_at: datetime | None = None
    dispute_resolution: dict[str, Any] | None = None
    dispute_period_ends_at: datetime | None = None

    # --- Settlement claim & concurrency ---
    settlement_claim: str | None = None
    settlement_claimed_at: datetime | None = None
    last_error: str | None = None
    version: int = 0

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def record_payment_link(self, name: str, value: str) -> None:
        """Set one of the payment linkage ids, refusing to overwrite it."""
        current = getattr(self, name)
        if current is not None and current != value:
            raise ValueError(f"{name} is already set to {current}; refusing {value}")
        setattr(self, name, value)

    def conditions_of_type(self, condition_type: str) -> list[SettlementCondition]:
        return [c for c in self.conditions if c.type == condition_type]

    def status_entered_at(self, status: EscrowStatus) -> datetime | None:
        """When the transaction last moved into ``status``."""
        for entry in reversed(self.status_history):
            if entry.status == status:
                return entry.timestamp
        return None

    def claim_is_active(self, now: datetime, ttl_seconds: int) -> bool:
        if self.settlement_claim is None or self.settlement_claimed_at is None:
            return False
        return (now - self.settlement_claimed_at).total_seconds() < ttl_seconds

    def copy(self) -> EscrowTransaction:
        return EscrowTransaction.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "seller_destination_id": self.seller_destination_id,
            "item_description": self.item_description,
            "item_type": self.item_type.value,
            "amount": self.amount,
            "platform_fee": self.platform_fee,
            "rail_fee": self.rail_fee,
            "seller_amount": self.seller_amount,
            "currency": self.currency,
            "dispute_period_days": self.dispute_period_days,
            "status": self.status.value,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "conditions": [condition.to_dict() for condition in self.conditions],
            "all_conditions_met": self.all_conditions_met,
            "metadata": dict(self.metadata),
            "payment_intent_id": self.payment_intent_id,
            "charge_id": self.charge_id,
            "transfer_id": self.transfer_id,
            "payout_id": self.payout_id,
            "refund_id": self.refund_id,
            "refunded_amount": self.refunded_amount,
            "shipping": self.shipping.to_dict() if self.shipping else None,
            "dispute_reason": self.dispute_reason,
            "disputed_at": format_instant(self.disputed_at),
            "dispute_resolution": self.dispute_resolution,
            "dispute_period_ends_at": format_instant(self.dispute_period_ends_at),
            "settlement_claim": self.settlement_claim,
            "settlement_claimed_at": format_instant(self.settlement_claimed_at),
            "last_error": self.last_error,
            "version": self.version,
            "created_at": format_instant(self.created_at),
            "updated_at": format_instant(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EscrowTransaction:
        shipping = data.get("shipping")
        return cls(
            id=uuid.UUID(str(data["id"])),
            buyer_id=data["buyer_id"],
            seller_id=data["seller_id"],
            seller_destination_id=data["seller_destination_id"],
            item_description=data.get("item_description", ""),
            item_type=ItemType(data["item_type"]),
            amount=int(data["amount"]),
            platform_fee=int(data["platform_fee"]),
            rail_fee=int(data.get("rail_fee", 0)),
            seller_amount=int(data["seller_amount"]),
            currency=data["currency"],
            dispute_period_days=int(data["dispute_period_days"]),
            status=EscrowStatus(data["status"]),
            status_history=[
                StatusHistoryEntry.from_dict(entry) for entry in data.get("status_history") or []
            ],
            conditions=[
                SettlementCondition.from_dict(c, i)
                for i, c in enumerate(data.get("conditions") or [])
            ],
            all_conditions_met=bool(data.get("all_conditions_met", False)),
            metadata=dict(data.get("metadata") or {}),
            payment_intent_id=data.get("payment_intent_id"),
            charge_id=data.get("charge_id"),
            transfer_id=data.get("transfer_id"),
            payout_id=data.get("payout_id"),
            refund_id=data.get("refund_id"),
            refunded_amount=data.get("refunded_amount"),
            shipping=ShippingDetails.from_dict(shipping) if shipping else None,
            dispute_reason=data.get("dispute_reason"),
            disputed_at=parse_instant(data.get("disputed_at")),
            dispute_resolution=data.get("dispute_resolution"),
            dispute_period_ends_at=parse_instant(data.get("dispute_period_ends_at")),
            settlement_claim=data.get("settlement_claim"),
            settlement_claimed_at=parse_instant(data.get("settlement_claimed_at")),
            last_error=data.get("last_error"),
            version=int(data.get("version", 0)),
            created_at=parse_instant(data.get("created_at")) or utcnow(),
            updated_at=parse_instant(data.get("updated_at")) or utcnow(),
        )


# ---------------------------------------------------------------------------
# Engine outcomes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one evaluate_all pass."""

    transaction_id: uuid.UUID
    all_met: bool
    unmet: list[str]
    released: bool
    status: EscrowStatus
    release_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id),
            "all_met": self.all_met,
            "unmet": list(self.unmet),
            "released": self.released,
            "status": self.status.value,
            "release_error": self.release_error,
        }


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a successful release or refund."""

    transaction_id: uuid.UUID
    status: EscrowStatus
    transfer_id: str | None = None
    payout_id: str | None = None
    refund_id: str | None = None
    amount: int = 0


@dataclass(frozen=True)
class ActionResult:
    """What a lifecycle operation hands back to its caller."""

    transaction: EscrowTransaction
    evaluation: EvaluationResult | None = None
