"""Payment Service — card holds, transfers, payouts and refunds.

Provides both a real Stripe integration and a simulated mode for running
without a Stripe account.

In simulation mode, operation ids are derived from the idempotency key, so
repeating a call returns the same id, as Stripe does.
In production mode, the synchronous Stripe SDK runs in a worker thread;
network failures are retried with tenacity, everything else surfaces as a
PaymentRailError carrying the idempotency key.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable
from typing import Any

import stripe
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from escrow_settlement.config import get_settings
from escrow_settlement.domain.exceptions import PaymentRailError
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)


def _simulated_id(prefix: str, idempotency_key: str) -> str:
    digest = hashlib.sha256(idempotency_key.encode()).hexdigest()[:24]
    return f"{prefix}_sim_{digest}"


class PaymentService:
    """PaymentRail implementation over Stripe Connect (or a simulation of it)."""

    def __init__(self, simulate: bool = True, api_key: str | None = None) -> None:
        """Initialize payment service.

        Args:
            simulate: If True, return deterministic fake ids instead of calling Stripe.
            api_key: Stripe secret key; defaults to settings.stripe_secret_key.
        """
        self._simulate = simulate
        settings = get_settings()
        self._api_key = api_key or settings.stripe_secret_key
        if not simulate:
            if not self._api_key:
                raise ValueError("A Stripe secret key is required when payments are not simulated")
            stripe.max_network_retries = settings.stripe_max_network_retries

    @property
    def simulated(self) -> bool:
        return self._simulate

    @retry(
        retry=retry_if_exception_type(stripe.APIConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _call_stripe(self, fn: Callable[..., Any], **params: Any) -> Any:
        return await asyncio.to_thread(fn, api_key=self._api_key, **params)

    async def _execute(
        self,
        operation: str,
        idempotency_key: str,
        fn: Callable[..., Any],
        **params: Any,
    ) -> Any:
        try:
            return await self._call_stripe(fn, idempotency_key=idempotency_key, **params)
        except stripe.StripeError as exc:
            logger.error(
                "payment.stripe_error",
                operation=operation,
                idempotency_key=idempotency_key,
                error=str(exc),
                stripe_code=getattr(exc, "code", None),
            )
            raise PaymentRailError(
                message=f"Stripe {operation} failed: {exc.user_message or exc}",
                operation=operation,
                idempotency_key=idempotency_key,
            ) from exc

    # ------------------------------------------------------------------
    # Buyer side
    # ------------------------------------------------------------------

    async def create_payment_hold(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> str:
        """Authorize the buyer's card for ``amount`` without capturing it."""
        if self._simulate:
            intent_id = _simulated_id("pi", idempotency_key)
            logger.info("payment.hold_simulated", payment_intent_id=intent_id, amount=amount)
            return intent_id

        intent = await self._execute(
            "create_payment_hold",
            idempotency_key,
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            capture_method="manual",
            metadata=metadata or {},
        )
        logger.info("payment.hold_created", payment_intent_id=intent.id, amount=amount)
        return intent.id

    async def capture_payment(self, payment_intent_id: str, idempotency_key: str) -> str:
        """Capture a held payment and return the resulting charge id."""
        if self._simulate:
            charge_id = _simulated_id("ch", idempotency_key)
            logger.info("payment.capture_simulated", payment_intent_id=payment_intent_id, charge_id=charge_id)
            return charge_id

        intent = await self._execute(
            "capture_payment",
            idempotency_key,
            stripe.PaymentIntent.capture,
            intent=payment_intent_id,
        )
        charge_id = intent.latest_charge if isinstance(intent.latest_charge, str) else intent.latest_charge.id
        logger.info("payment.captured", payment_intent_id=payment_intent_id, charge_id=charge_id)
        return charge_id

    async def cancel_payment_hold(self, payment_intent_id: str, idempotency_key: str) -> str:
        if self._simulate:
            logger.info("payment.cancel_simulated", payment_intent_id=payment_intent_id)
            return payment_intent_id

        intent = await self._execute(
            "cancel_payment_hold",
            idempotency_key,
            stripe.PaymentIntent.cancel,
            intent=payment_intent_id,
        )
        logger.info("payment.hold_cancelled", payment_intent_id=intent.id)
        return intent.id

    async def refund_payment(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> str:
        """Refund a captured payment in full, or ``amount`` of it."""
        if self._simulate:
            refund_id = _simulated_id("re", idempotency_key)
            logger.info("payment.refund_simulated", refund_id=refund_id, amount=amount)
            return refund_id

        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reason": "requested_by_customer",
            "metadata": {"escrow_reason": reason or ""},
        }
        if amount is not None:
            params["amount"] = amount
        refund = await self._execute("refund", idempotency_key, stripe.Refund.create, **params)
        logger.info("payment.refunded", refund_id=refund.id, amount=amount)
        return refund.id

    # ------------------------------------------------------------------
    # Seller side
    # ------------------------------------------------------------------

    async def transfer_to_seller(
        self,
        amount: int,
        currency: str,
        destination_id: str,
        idempotency_key: str,
        source_charge_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Move the seller amount from the platform balance to the connected account."""
        if self._simulate:
            transfer_id = _simulated_id("tr", idempotency_key)
            logger.info(
                "payment.transfer_simulated",
                transfer_id=transfer_id,
                amount=amount,
                destination=destination_id,
            )
            return transfer_id

        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "destination": destination_id,
            "metadata": metadata or {},
        }
        if source_charge_id:
            params["source_transaction"] = source_charge_id
        transfer = await self._execute("transfer", idempotency_key, stripe.Transfer.create, **params)
        logger.info("payment.transfer_created", transfer_id=transfer.id, amount=amount)
        return transfer.id

    async def payout_to_bank(
        self,
        amount: int,
        currency: str,
        destination_id: str,
        idempotency_key: str,
    ) -> str:
        """Pay out from the connected account's balance to its bank account."""
        if self._simulate:
            payout_id = _simulated_id("po", idempotency_key)
            logger.info("payment.payout_simulated", payout_id=payout_id, amount=amount)
            return payout_id

        payout = await self._execute(
            "payout",
            idempotency_key,
            stripe.Payout.create,
            amount=amount,
            currency=currency.lower(),
            stripe_account=destination_id,
        )
        logger.info("payment.payout_created", payout_id=payout.id, amount=amount)
        return payout.id
