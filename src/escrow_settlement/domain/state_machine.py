"""Escrow Transaction State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain
level. No matter which trigger fires (buyer, seller, carrier webhook or the
scheduler sweep), an illegal transition such as pending_payment -> released
raises TransitionNotAllowed.

The state machine is instantiated per-transaction and validates transitions
before the transaction's status field is updated.

Transition table:
    pending_payment   -> payment_received   (capture_payment)
    pending_payment   -> cancelled          (cancel)
    payment_received  -> shipped            (ship)
    shipped           -> in_transit         (mark_in_transit)
    shipped|in_transit -> delivered         (mark_delivered)
    shipped|in_transit|delivered -> confirmed            (confirm_receipt)
    shipped|in_transit|delivered|confirmed -> disputed   (open_dispute)
    payment_received..confirmed -> released              (release)
    payment_received..confirmed -> auto_released         (auto_release)
    payment_received..confirmed|disputed -> refunded     (refund)
    disputed          -> released           (resolve_for_seller)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow transaction lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="payment_received")
        sm.ship()            # transitions to shipped
        sm.status            # "shipped"
    """

    # --- States ---
    pending_payment = State("Pending payment", value="pending_payment", initial=True)
    payment_received = State("Payment received", value="payment_received")
    shipped = State("Shipped", value="shipped")
    in_transit = State("In transit", value="in_transit")
    delivered = State("Delivered", value="delivered")
    confirmed = State("Confirmed", value="confirmed")
    disputed = State("Disputed", value="disputed")
    released = State("Released", value="released", final=True)
    auto_released = State("Auto released", value="auto_released", final=True)
    refunded = State("Refunded", value="refunded", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---

    # Payment
    capture_payment = pending_payment.to(payment_received)
    cancel = pending_payment.to(cancelled)

    # Fulfilment
    ship = payment_received.to(shipped)
    mark_in_transit = shipped.to(in_transit)
    mark_delivered = shipped.to(delivered) | in_transit.to(delivered)
    confirm_receipt = (
        shipped.to(confirmed) | in_transit.to(confirmed) | delivered.to(confirmed)
    )

    # Disputes
    open_dispute = (
        shipped.to(disputed)
        | in_transit.to(disputed)
        | delivered.to(disputed)
        | confirmed.to(disputed)
    )
    resolve_for_seller = disputed.to(released)

    # Settlement
    release = (
        payment_received.to(released)
        | shipped.to(released)
        | in_transit.to(released)
        | delivered.to(released)
        | confirmed.to(released)
    )
    auto_release = (
        payment_received.to(auto_released)
        | shipped.to(auto_released)
        | in_transit.to(auto_released)
        | delivered.to(auto_released)
        | confirmed.to(auto_released)
    )
    refund = (
        payment_received.to(refunded)
        | shipped.to(refunded)
        | in_transit.to(refunded)
        | delivered.to(refunded)
        | confirmed.to(refunded)
        | disputed.to(refunded)
    )

    def __init__(self, current_status: str = "pending_payment") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "shipped").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        # Newer releases keep the identifier on Event.id and a display name on Event.name
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method) or event_name.startswith("_"):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
