"""Payment Rail Protocol.

Card holds, transfers to the seller's connected account, bank payouts and
refunds. Every call takes an idempotency key; repeating a call with the same
key must return the same operation id and move money at most once.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PaymentRail(Protocol):
    """Concrete implementation: services/payment_service.py (simulated or Stripe)."""

    async def create_payment_hold(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> str:
        """Authorize ``amount`` without capturing it. Returns the payment intent id."""
        ...

    async def capture_payment(self, payment_intent_id: str, idempotency_key: str) -> str:
        """Capture a held payment. Returns the charge id."""
        ...

    async def cancel_payment_hold(self, payment_intent_id: str, idempotency_key: str) -> str:
        """Release an uncaptured hold. Returns the payment intent id."""
        ...

    async def transfer_to_seller(
        self,
        amount: int,
        currency: str,
        destination_id: str,
        idempotency_key: str,
        source_charge_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Move ``amount`` from the platform balance to the seller's account. Returns the transfer id."""
        ...

    async def payout_to_bank(
        self,
        amount: int,
        currency: str,
        destination_id: str,
        idempotency_key: str,
    ) -> str:
        """Pay out from the seller's account to their bank. Returns the payout id."""
        ...

    async def refund_payment(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> str:
        """Refund all of, or ``amount`` of, a captured payment. Returns the refund id."""
        ...
