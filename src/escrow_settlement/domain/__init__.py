"""Domain layer — pure business logic with zero framework dependencies."""

from escrow_settlement.domain.enums import (
    Combinator,
    ConditionType,
    EscrowStatus,
    EventType,
)
from escrow_settlement.domain.exceptions import (
    EscrowError,
    InvalidStateTransitionError,
    TransactionNotFoundError,
)
from escrow_settlement.domain.models import (
    EscrowEvent,
    EscrowTransaction,
    EvaluationResult,
    SettlementCondition,
)
from escrow_settlement.domain.payment_protocol import PaymentRail
from escrow_settlement.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)
from escrow_settlement.domain.store_protocol import EscrowStore

__all__ = [
    "Combinator",
    "ConditionType",
    "EscrowStatus",
    "EventType",
    "EscrowError",
    "InvalidStateTransitionError",
    "TransactionNotFoundError",
    "EscrowEvent",
    "EscrowTransaction",
    "EvaluationResult",
    "SettlementCondition",
    "PaymentRail",
    "EscrowStateMachine",
    "validate_transition",
    "EscrowStore",
]
