"""Domain enumerations for the escrow settlement engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow transaction.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    RELEASED = "released"
    AUTO_RELEASED = "auto_released"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


# No evaluation and no fund movement once a transaction reaches one of these.
TERMINAL_STATUSES: frozenset[EscrowStatus] = frozenset(
    {
        EscrowStatus.RELEASED,
        EscrowStatus.AUTO_RELEASED,
        EscrowStatus.REFUNDED,
        EscrowStatus.CANCELLED,
    }
)

# Money reached the seller.
PAID_OUT_STATUSES: frozenset[EscrowStatus] = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.AUTO_RELEASED}
)

# Funds are captured and no dispute is open: a met condition set releases.
RELEASABLE_STATUSES: frozenset[EscrowStatus] = frozenset(
    {
        EscrowStatus.PAYMENT_RECEIVED,
        EscrowStatus.SHIPPED,
        EscrowStatus.IN_TRANSIT,
        EscrowStatus.DELIVERED,
        EscrowStatus.CONFIRMED,
    }
)

# Statuses the scheduler sweep re-evaluates, in sweep order.
ACTIVE_STATUSES: tuple[EscrowStatus, ...] = (
    EscrowStatus.PAYMENT_RECEIVED,
    EscrowStatus.SHIPPED,
    EscrowStatus.IN_TRANSIT,
    EscrowStatus.DELIVERED,
    EscrowStatus.CONFIRMED,
)


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state-changing operation MUST produce at least one event.
    This is the append-only forensic trail for disputes.
    """

    # Lifecycle events
    CREATED = "created"
    PAYMENT_RECEIVED = "payment_received"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    # Condition events
    CONDITION_UPDATED = "condition_updated"
    CONDITION_MET = "condition_met"

    # Settlement events
    TRANSFER_CREATED = "transfer_created"
    RELEASED = "released"
    AUTO_RELEASED = "auto_released"
    RELEASE_FAILED = "release_failed"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"

    # Dispute events
    DISPUTED = "disputed"
    DISPUTE_RESOLVED = "dispute_resolved"


class Actor(enum.StrEnum):
    """Who triggered a transition or event."""

    BUYER = "buyer"
    SELLER = "seller"
    PLATFORM = "platform"
    SYSTEM = "system"
    WEBHOOK = "webhook"


class ConditionType(enum.StrEnum):
    """Kinds of settlement condition understood by the evaluator.

    Stored in SettlementCondition.type. Unknown strings are kept as-is
    and always evaluate to not met.
    """

    TRACKING_CONFIRMATION = "tracking_confirmation"
    TIME_BASED = "time_based"
    BUYER_CONFIRMATION = "buyer_confirmation"
    DELIVERY_CONFIRMATION = "delivery_confirmation"
    MILESTONE_BASED = "milestone_based"
    INSPECTION_PERIOD = "inspection_period"
    DUAL_SIGNATURE = "dual_signature"
    CUSTOM = "custom"


class Combinator(enum.StrEnum):
    """How a condition takes part in aggregation.

    ALL_OF conditions must all be met. ANY_OF conditions are grouped by
    SettlementCondition.group and each group needs one met member.
    """

    ALL_OF = "all_of"
    ANY_OF = "any_of"


class ItemType(enum.StrEnum):
    """Item categories, used to pick the default condition template."""

    PHYSICAL_GOODS = "physical_goods"
    DIGITAL_GOODS = "digital_goods"
    SERVICE = "service"
    SUBSCRIPTION = "subscription"


class CarrierStatus(enum.StrEnum):
    """Delivery progress reported by a carrier webhook or tracking lookup."""

    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class DisputeOutcome(enum.StrEnum):
    """Platform decision closing a dispute."""

    RELEASE = "release"
    REFUND = "refund"


class PartyRole(enum.StrEnum):
    """Side of the transaction a user is listed on."""

    BUYER = "buyer"
    SELLER = "seller"
