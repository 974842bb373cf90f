"""Release/Refund Coordinator — moves escrowed money exactly once.

Release protocol:
    1. Claim     conditional write of ``settlement_claim`` (version-checked).
                 A second caller sees the live claim and gets
                 SettlementInProgressError.
    2. Transfer  seller amount to the destination account, unless a
                 ``transfer_id`` was recorded by an earlier attempt. The id
                 is persisted right away with a ``transfer_created`` event.
    3. Payout    destination account -> seller's bank.
    4. Finalize  status transition, payout id, ``released`` event, claim
                 cleared, all in one write.

A payout failure leaves the transfer id in place, clears the claim and
raises PayoutFailedError; the next attempt resumes at step 3. Every rail
call carries a per-transaction idempotency key, so even a worker that lost
its claim cannot move the money twice.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from escrow_settlement.config import get_settings
from escrow_settlement.domain.enums import (
    RELEASABLE_STATUSES,
    Actor,
    DisputeOutcome,
    EscrowStatus,
    EventType,
)
from escrow_settlement.domain.exceptions import (
    ConditionsNotMetError,
    InvalidRefundAmountError,
    InvalidStateTransitionError,
    PaymentRailError,
    PayoutFailedError,
    RefundFailedError,
    RefundNotAllowedError,
    SettlementInProgressError,
    TransactionAlreadySettledError,
    TransferFailedError,
)
from escrow_settlement.domain.lifecycle import audit_event, ensure_transition, transition
from escrow_settlement.domain.models import (
    EscrowTransaction,
    SettlementResult,
    format_instant,
    utcnow,
)
from escrow_settlement.domain.payment_protocol import PaymentRail
from escrow_settlement.domain.store_protocol import EscrowStore
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.notification_service import Notifier, send_quietly
from escrow_settlement.services.persistence import apply_change

logger = get_logger(__name__)


def transfer_key(transaction_id: uuid.UUID) -> str:
    return f"escrow-{transaction_id}-transfer"


def payout_key(transaction_id: uuid.UUID, transfer_id: str) -> str:
    return f"escrow-{transaction_id}-payout-{transfer_id}"


def refund_key(transaction_id: uuid.UUID, amount: int | None = None) -> str:
    # The rail rejects a reused key whose parameters changed.
    return f"escrow-{transaction_id}-refund-{'full' if amount is None else amount}"


class ReleaseService:
    """Coordinates the two-step release and the refund against the payment rail."""

    def __init__(
        self,
        store: EscrowStore,
        payments: PaymentRail,
        clock: Callable[[], datetime] = utcnow,
        notifier: Notifier | None = None,
        claim_ttl_seconds: int | None = None,
    ) -> None:
        self._store = store
        self._payments = payments
        self._clock = clock
        self._notifier = notifier
        self._claim_ttl_seconds = claim_ttl_seconds or get_settings().settlement_claim_ttl_seconds

    # ------------------------------------------------------------------
    # Claim handling
    # ------------------------------------------------------------------

    async def _claim(
        self,
        transaction_id: uuid.UUID,
        token: str,
        check: Callable[[EscrowTransaction], None],
    ) -> EscrowTransaction:
        async def mutate(txn: EscrowTransaction) -> list:
            if txn.is_terminal:
                raise TransactionAlreadySettledError(str(txn.id), txn.status.value)
            check(txn)
            now = self._clock()
            if txn.claim_is_active(now, self._claim_ttl_seconds):
                raise SettlementInProgressError(str(txn.id))
            txn.settlement_claim = token
            txn.settlement_claimed_at = now
            return []

        return await apply_change(self._store, transaction_id, mutate)

    @staticmethod
    def _assert_claim(txn: EscrowTransaction, token: str) -> None:
        if txn.settlement_claim != token:
            raise SettlementInProgressError(str(txn.id))

    async def _abandon(
        self,
        transaction_id: uuid.UUID,
        token: str,
        event_type: EventType,
        error: str,
        data: dict[str, Any],
    ) -> None:
        """Record a failed attempt and give up the claim, if it is still ours."""

        async def mutate(txn: EscrowTransaction) -> list | None:
            if txn.settlement_claim != token:
                return None
            now = self._clock()
            txn.settlement_claim = None
            txn.settlement_claimed_at = None
            txn.last_error = error
            txn.updated_at = now
            return [
                audit_event(
                    txn,
                    event_type,
                    error,
                    triggered_by=Actor.SYSTEM,
                    now=now,
                    data=data,
                )
            ]

        await apply_change(self._store, transaction_id, mutate)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(
        self,
        transaction_id: uuid.UUID,
        *,
        auto: bool = False,
        force: bool = False,
        triggered_by: Actor = Actor.SYSTEM,
        note: str = "",
    ) -> SettlementResult:
        """Pay the seller amount out to the seller.

        Args:
            auto: Record the outcome as ``auto_released`` (scheduler sweep).
            force: Dispute resolution in the seller's favour; requires status
                ``disputed`` and skips the condition check.

        Raises:
            ConditionsNotMetError / TransactionAlreadySettledError /
            InvalidStateTransitionError: Preconditions failed, nothing changed.
            SettlementInProgressError: Another worker holds the claim.
            TransferFailedError: The transfer failed; nothing moved.
            PayoutFailedError: Transfer done, payout failed; retry the release.
        """
        if force:
            event_name = "resolve_for_seller"
        else:
            event_name = "auto_release" if auto else "release"

        def check(txn: EscrowTransaction) -> None:
            if force:
                if txn.status != EscrowStatus.DISPUTED:
                    raise InvalidStateTransitionError(txn.status.value, event_name)
                return
            if txn.status not in RELEASABLE_STATUSES:
                raise InvalidStateTransitionError(txn.status.value, event_name)
            if not txn.all_conditions_met:
                raise ConditionsNotMetError(str(txn.id))

        token = uuid.uuid4().hex
        txn = await self._claim(transaction_id, token, check)
        log = logger.bind(transaction_id=str(transaction_id), claim=token)

        # --- Step A: transfer (skipped when an earlier attempt recorded one) ---
        transfer_id = txn.transfer_id
        if transfer_id is None:
            key = transfer_key(txn.id)
            try:
                transfer_id = await self._payments.transfer_to_seller(
                    amount=txn.seller_amount,
                    currency=txn.currency,
                    destination_id=txn.seller_destination_id,
                    idempotency_key=key,
                    source_charge_id=txn.charge_id,
                    metadata={"escrow_id": str(txn.id)},
                )
            except PaymentRailError as exc:
                log.error("release.transfer_failed", error=exc.message)
                await self._abandon(
                    txn.id,
                    token,
                    EventType.RELEASE_FAILED,
                    f"Transfer failed: {exc.message}",
                    {"stage": "transfer", "idempotency_key": key},
                )
                raise TransferFailedError(str(txn.id), exc.message) from exc

            async def record_transfer(current: EscrowTransaction) -> list:
                self._assert_claim(current, token)
                now = self._clock()
                current.record_payment_link("transfer_id", transfer_id)
                current.updated_at = now
                return [
                    audit_event(
                        current,
                        EventType.TRANSFER_CREATED,
                        f"Transferred {current.seller_amount} {current.currency} to seller account",
                        triggered_by=Actor.SYSTEM,
                        now=now,
                        data={"transfer_id": transfer_id, "amount": current.seller_amount},
                    )
                ]

            txn = await apply_change(self._store, txn.id, record_transfer)
            log.info("release.transfer_created", transfer_id=transfer_id)
        else:
            log.info("release.transfer_reused", transfer_id=transfer_id)

        # --- Step B: payout ---
        try:
            payout_id = await self._payments.payout_to_bank(
                amount=txn.seller_amount,
                currency=txn.currency,
                destination_id=txn.seller_destination_id,
                idempotency_key=payout_key(txn.id, transfer_id),
            )
        except PaymentRailError as exc:
            log.error("release.payout_failed", transfer_id=transfer_id, error=exc.message)
            await self._abandon(
                txn.id,
                token,
                EventType.RELEASE_FAILED,
                f"Payout failed after transfer {transfer_id}: {exc.message}",
                {"stage": "payout", "transfer_id": transfer_id, "retryable": True},
            )
            raise PayoutFailedError(str(txn.id), transfer_id, exc.message) from exc

        # --- Finalize ---
        async def finalize(current: EscrowTransaction) -> list:
            self._assert_claim(current, token)
            now = self._clock()
            current.record_payment_link("payout_id", payout_id)
            if force:
                current.dispute_resolution = {
                    "outcome": DisputeOutcome.RELEASE.value,
                    "note": note,
                    "resolved_at": format_instant(now),
                    "resolved_by": triggered_by.value,
                }
            event = transition(
                current,
                event_name,
                triggered_by=triggered_by,
                now=now,
                note=note or ("Auto-released by scheduler" if auto else "Funds released to seller"),
                data={
                    "transfer_id": transfer_id,
                    "payout_id": payout_id,
                    "amount": current.seller_amount,
                },
            )
            current.settlement_claim = None
            current.settlement_claimed_at = None
            current.last_error = None
            return [event]

        txn = await apply_change(self._store, txn.id, finalize)
        log.info("release.completed", status=txn.status.value, payout_id=payout_id)
        await send_quietly(
            self._notifier,
            txn.seller_id,
            "funds_released",
            transaction_id=str(txn.id),
            amount=txn.seller_amount,
            currency=txn.currency,
        )

        return SettlementResult(
            transaction_id=txn.id,
            status=txn.status,
            transfer_id=transfer_id,
            payout_id=payout_id,
            amount=txn.seller_amount,
        )

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(
        self,
        transaction_id: uuid.UUID,
        amount: int | None = None,
        reason: str | None = None,
        *,
        triggered_by: Actor = Actor.PLATFORM,
    ) -> SettlementResult:
        """Refund all of, or ``amount`` of, the captured payment to the buyer.

        A partial refund still ends the transaction in ``refunded``; the
        refunded amount is recorded.

        Raises:
            InvalidRefundAmountError: ``amount`` is not within (0, original].
            RefundNotAllowedError: Money already went to the seller's account.
            InvalidStateTransitionError / TransactionAlreadySettledError:
                Payment not captured, or already settled.
            RefundFailedError: The rail rejected the refund.
        """

        def check(txn: EscrowTransaction) -> None:
            ensure_transition(txn, "refund")
            if txn.transfer_id is not None:
                raise RefundNotAllowedError(str(txn.id), "funds were already transferred to the seller")
            if amount is not None and not 0 < amount <= txn.amount:
                raise InvalidRefundAmountError(amount, txn.amount)

        token = uuid.uuid4().hex
        txn = await self._claim(transaction_id, token, check)
        log = logger.bind(transaction_id=str(transaction_id), claim=token)
        was_disputed = txn.status == EscrowStatus.DISPUTED
        key = refund_key(txn.id, amount)

        try:
            refund_id = await self._payments.refund_payment(
                payment_intent_id=txn.payment_intent_id,
                idempotency_key=key,
                amount=amount,
                reason=reason,
            )
        except PaymentRailError as exc:
            log.error("refund.failed", error=exc.message)
            await self._abandon(
                txn.id,
                token,
                EventType.REFUND_FAILED,
                f"Refund failed: {exc.message}",
                {"idempotency_key": key, "amount": amount},
            )
            raise RefundFailedError(str(txn.id), exc.message) from exc

        refunded_amount = amount if amount is not None else txn.amount

        async def finalize(current: EscrowTransaction) -> list:
            self._assert_claim(current, token)
            now = self._clock()
            current.record_payment_link("refund_id", refund_id)
            current.refunded_amount = refunded_amount
            if was_disputed:
                current.dispute_resolution = {
                    "outcome": DisputeOutcome.REFUND.value,
                    "note": reason or "",
                    "resolved_at": format_instant(now),
                    "resolved_by": triggered_by.value,
                }
            event = transition(
                current,
                "refund",
                triggered_by=triggered_by,
                now=now,
                note=reason or "Refunded to buyer",
                data={
                    "refund_id": refund_id,
                    "amount": refunded_amount,
                    "partial": refunded_amount < current.amount,
                },
            )
            current.settlement_claim = None
            current.settlement_claimed_at = None
            current.last_error = None
            return [event]

        txn = await apply_change(self._store, txn.id, finalize)
        log.info("refund.completed", refund_id=refund_id, amount=refunded_amount)
        await send_quietly(
            self._notifier,
            txn.buyer_id,
            "payment_refunded",
            transaction_id=str(txn.id),
            amount=refunded_amount,
            currency=txn.currency,
        )

        return SettlementResult(
            transaction_id=txn.id,
            status=txn.status,
            refund_id=refund_id,
            amount=refunded_amount,
        )
