"""Apply one guarded status transition to a transaction in memory.

Every caller goes through ``transition`` so each status change is checked
by the state machine and produces exactly one history entry and one audit
event. Persisting both is the caller's job (a single store save).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from statemachine.exceptions import TransitionNotAllowed

from escrow_settlement.domain.enums import Actor, EscrowStatus, EventType
from escrow_settlement.domain.exceptions import InvalidStateTransitionError
from escrow_settlement.domain.models import EscrowEvent, EscrowTransaction, StatusHistoryEntry
from escrow_settlement.domain.state_machine import validate_transition

# Default audit event per state-machine event.
EVENT_TYPES: dict[str, EventType] = {
    "capture_payment": EventType.PAYMENT_RECEIVED,
    "cancel": EventType.CANCELLED,
    "ship": EventType.SHIPPED,
    "mark_in_transit": EventType.IN_TRANSIT,
    "mark_delivered": EventType.DELIVERED,
    "confirm_receipt": EventType.CONFIRMED,
    "open_dispute": EventType.DISPUTED,
    "resolve_for_seller": EventType.DISPUTE_RESOLVED,
    "release": EventType.RELEASED,
    "auto_release": EventType.AUTO_RELEASED,
    "refund": EventType.REFUNDED,
}


def ensure_transition(transaction: EscrowTransaction, event_name: str) -> EscrowStatus:
    """Return the status ``event_name`` would move to, or raise."""
    try:
        return EscrowStatus(validate_transition(transaction.status.value, event_name))
    except (TransitionNotAllowed, ValueError) as exc:
        raise InvalidStateTransitionError(
            current_state=transaction.status.value,
            attempted_event=event_name,
        ) from exc


def transition(
    transaction: EscrowTransaction,
    event_name: str,
    *,
    triggered_by: Actor,
    now: datetime,
    note: str = "",
    event_type: EventType | None = None,
    description: str | None = None,
    data: dict[str, Any] | None = None,
) -> EscrowEvent:
    """Move ``transaction`` through ``event_name`` and return its audit event.

    Raises:
        InvalidStateTransitionError: If the event is not allowed from the
            current status. The transaction is left untouched.
    """
    previous = transaction.status
    new_status = ensure_transition(transaction, event_name)

    transaction.status = new_status
    transaction.updated_at = now
    transaction.status_history.append(
        StatusHistoryEntry(status=new_status, timestamp=now, triggered_by=triggered_by, note=note)
    )

    return EscrowEvent(
        transaction_id=transaction.id,
        event_type=event_type or EVENT_TYPES[event_name],
        description=description or note or f"{previous.value} -> {new_status.value}",
        triggered_by=triggered_by,
        data={"from_status": previous.value, "to_status": new_status.value, **(data or {})},
        created_at=now,
    )


def audit_event(
    transaction: EscrowTransaction,
    event_type: EventType,
    description: str,
    *,
    triggered_by: Actor,
    now: datetime,
    data: dict[str, Any] | None = None,
) -> EscrowEvent:
    """Audit event for a change that does not move the status."""
    return EscrowEvent(
        transaction_id=transaction.id,
        event_type=event_type,
        description=description,
        triggered_by=triggered_by,
        data=dict(data or {}),
        created_at=now,
    )
