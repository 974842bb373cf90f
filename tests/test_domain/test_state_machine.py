"""Tests for the EscrowStateMachine domain guard.

These tests verify that:
    1. The shipping lifecycle and its shortcuts are allowed.
    2. Money can only move once funds are captured.
    3. Terminal statuses accept nothing.
    4. validate_transition reports unknown events and statuses.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from escrow_settlement.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)


class TestHappyPath:
    """pending_payment -> released through every shipping stage."""

    def test_full_lifecycle(self) -> None:
        sm = EscrowStateMachine("pending_payment")
        sm.capture_payment()
        assert sm.status == "payment_received"
        sm.ship()
        assert sm.status == "shipped"
        sm.mark_in_transit()
        assert sm.status == "in_transit"
        sm.mark_delivered()
        assert sm.status == "delivered"
        sm.confirm_receipt()
        assert sm.status == "confirmed"
        sm.release()
        assert sm.status == "released"

    @pytest.mark.parametrize("start", ["shipped", "in_transit", "delivered"])
    def test_buyer_may_confirm_before_carrier_reports(self, start: str) -> None:
        assert validate_transition(start, "confirm_receipt") == "confirmed"

    def test_delivery_may_skip_in_transit(self) -> None:
        assert validate_transition("shipped", "mark_delivered") == "delivered"


class TestSettlement:
    @pytest.mark.parametrize(
        "start", ["payment_received", "shipped", "in_transit", "delivered", "confirmed"]
    )
    def test_release_from_funded_statuses(self, start: str) -> None:
        assert validate_transition(start, "release") == "released"
        assert validate_transition(start, "auto_release") == "auto_released"
        assert validate_transition(start, "refund") == "refunded"

    def test_pending_payment_cannot_release_or_refund(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("pending_payment", "release")
        with pytest.raises(TransitionNotAllowed):
            validate_transition("pending_payment", "refund")

    def test_cancel_only_before_payment(self) -> None:
        assert validate_transition("pending_payment", "cancel") == "cancelled"
        with pytest.raises(TransitionNotAllowed):
            validate_transition("payment_received", "cancel")


class TestDisputePath:
    def test_disputed_resolves_either_way(self) -> None:
        assert validate_transition("disputed", "resolve_for_seller") == "released"
        assert validate_transition("disputed", "refund") == "refunded"

    def test_disputed_blocks_normal_release(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("disputed", "release")
        with pytest.raises(TransitionNotAllowed):
            validate_transition("disputed", "auto_release")

    def test_cannot_dispute_before_shipping(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("payment_received", "open_dispute")


class TestTerminalStates:
    @pytest.mark.parametrize("terminal", ["released", "auto_released", "refunded", "cancelled"])
    def test_terminal_has_no_allowed_events(self, terminal: str) -> None:
        assert EscrowStateMachine(terminal).get_allowed_events() == []

    def test_released_cannot_be_refunded(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("released", "refund")


class TestValidateTransition:
    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("shipped", "teleport")

    def test_unknown_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("lost")

    def test_allowed_events_from_payment_received(self) -> None:
        allowed = set(EscrowStateMachine("payment_received").get_allowed_events())
        assert allowed == {"ship", "release", "auto_release", "refund"}
