"""Escrow Service — core business logic for the transaction lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - The escrow store (versioned reads and writes)
    - The payment rail (holds and captures)
    - The settlement engine (re-evaluation after every relevant change)

Both REST routes and the scheduler call into this service, ensuring a
single source of truth for all business rules.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from escrow_settlement.domain.conditions import unmet_descriptions
from escrow_settlement.domain.enums import (
    TERMINAL_STATUSES,
    Actor,
    CarrierStatus,
    ConditionType,
    DisputeOutcome,
    EscrowStatus,
    EventType,
    ItemType,
    PartyRole,
)
from escrow_settlement.domain.exceptions import (
    ConditionNotFoundError,
    DisputePeriodExpiredError,
    DuplicateOperationError,
    InvalidStateTransitionError,
    TransactionAlreadySettledError,
    UnauthorizedActorError,
    ValidationError,
)
from escrow_settlement.domain.fees import compute_fees
from escrow_settlement.domain.lifecycle import audit_event, ensure_transition, transition
from escrow_settlement.domain.models import (
    ActionResult,
    EscrowEvent,
    EscrowTransaction,
    EvaluationResult,
    PlatformConfig,
    SettlementResult,
    ShippingDetails,
    StatusHistoryEntry,
    format_instant,
    parse_instant,
    utcnow,
)
from escrow_settlement.domain.payment_protocol import PaymentRail
from escrow_settlement.domain.state_machine import EscrowStateMachine
from escrow_settlement.domain.store_protocol import EscrowStore, IdempotencyStore
from escrow_settlement.domain.templates import build_custom_conditions, default_conditions
from escrow_settlement.infrastructure.redis_client import PENDING
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.notification_service import Notifier, send_quietly
from escrow_settlement.services.persistence import apply_change, load_or_raise
from escrow_settlement.services.release_service import ReleaseService
from escrow_settlement.services.settlement_service import SettlementService

logger = get_logger(__name__)


def _require_party(txn: EscrowTransaction, actor_id: str, role: PartyRole) -> None:
    expected = txn.buyer_id if role == PartyRole.BUYER else txn.seller_id
    if actor_id != expected:
        raise UnauthorizedActorError(actor_id, role.value)


class EscrowService:
    """Manages the escrow transaction lifecycle."""

    def __init__(
        self,
        store: EscrowStore,
        payments: PaymentRail,
        settlement: SettlementService,
        releases: ReleaseService,
        clock: Callable[[], datetime] = utcnow,
        notifier: Notifier | None = None,
        idempotency: IdempotencyStore | None = None,
        default_config: PlatformConfig | None = None,
    ) -> None:
        self._store = store
        self._payments = payments
        self._settlement = settlement
        self._releases = releases
        self._clock = clock
        self._notifier = notifier
        self._idempotency = idempotency
        self._default_config = default_config or PlatformConfig()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        buyer_id: str,
        seller_id: str,
        seller_destination_id: str,
        amount: int,
        item_description: str,
        item_type: ItemType = ItemType.PHYSICAL_GOODS,
        currency: str = "usd",
        conditions: list[dict[str, Any]] | None = None,
        dispute_period_days: int | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> EscrowTransaction:
        """Create a transaction in ``pending_payment`` with a card hold on the rail."""
        if buyer_id == seller_id:
            raise ValidationError("Buyer and seller must be different parties", code="SAME_PARTY")
        if not seller_destination_id:
            raise ValidationError("A seller destination account is required", code="MISSING_DESTINATION")

        config = await self.get_platform_config()
        fees = compute_fees(amount, config)
        now = self._clock()

        if conditions:
            settlement_conditions = build_custom_conditions(
                conditions, now, default_inspection_days=config.default_inspection_days
            )
        else:
            settlement_conditions = default_conditions(item_type, amount, config, now)

        if idempotency_key and self._idempotency is not None:
            existing = await self._idempotency.reserve(idempotency_key)
            if existing == PENDING:
                raise DuplicateOperationError(idempotency_key)
            if existing is not None:
                logger.info("escrow.create_replayed", idempotency_key=idempotency_key, transaction_id=existing)
                return await self.get_transaction(uuid.UUID(existing))

        txn = EscrowTransaction(
            buyer_id=buyer_id,
            seller_id=seller_id,
            seller_destination_id=seller_destination_id,
            item_description=item_description,
            item_type=ItemType(item_type),
            amount=amount,
            platform_fee=fees.platform_fee,
            rail_fee=fees.rail_fee,
            seller_amount=fees.seller_amount,
            currency=currency.lower(),
            dispute_period_days=dispute_period_days or config.default_dispute_period_days,
            conditions=settlement_conditions,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        txn.status_history.append(
            StatusHistoryEntry(
                status=EscrowStatus.PENDING_PAYMENT,
                timestamp=now,
                triggered_by=Actor.BUYER,
                note="Escrow created",
            )
        )

        try:
            txn.payment_intent_id = await self._payments.create_payment_hold(
                amount=amount,
                currency=txn.currency,
                idempotency_key=f"escrow-{txn.id}-hold",
                metadata={"escrow_id": str(txn.id), "buyer_id": buyer_id, "seller_id": seller_id},
            )
            created = await self._store.create(
                txn,
                [
                    audit_event(
                        txn,
                        EventType.CREATED,
                        f"Escrow created for {amount} {txn.currency}",
                        triggered_by=Actor.BUYER,
                        now=now,
                        data={
                            "amount": amount,
                            "platform_fee": fees.platform_fee,
                            "rail_fee": fees.rail_fee,
                            "seller_amount": fees.seller_amount,
                            "conditions": len(settlement_conditions),
                        },
                    )
                ],
            )
        except Exception:
            if idempotency_key and self._idempotency is not None:
                await self._idempotency.release(idempotency_key)
            raise

        if idempotency_key and self._idempotency is not None:
            await self._idempotency.complete(idempotency_key, str(created.id))

        logger.info(
            "escrow.created",
            transaction_id=str(created.id),
            amount=amount,
            seller_amount=fees.seller_amount,
            item_type=created.item_type.value,
        )
        return created

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def capture_payment(self, transaction_id: uuid.UUID, actor_id: str | None = None) -> ActionResult:
        """Capture the buyer's held payment (buyer or system)."""
        txn = await load_or_raise(self._store, transaction_id)
        if actor_id is not None:
            _require_party(txn, actor_id, PartyRole.BUYER)
        ensure_transition(txn, "capture_payment")

        charge_id = await self._payments.capture_payment(
            txn.payment_intent_id, idempotency_key=f"escrow-{txn.id}-capture"
        )

        async def mutate(current: EscrowTransaction) -> list[EscrowEvent]:
            now = self._clock()
            current.record_payment_link("charge_id", charge_id)
            return [
                transition(
                    current,
                    "capture_payment",
                    triggered_by=Actor.BUYER if actor_id else Actor.SYSTEM,
                    now=now,
                    note="Payment captured and held in escrow",
                    data={"charge_id": charge_id},
                )
            ]

        await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.payment_received", transaction_id=str(transaction_id), charge_id=charge_id)
        await send_quietly(self._notifier, txn.seller_id, "payment_received", transaction_id=str(txn.id))
        return await self._evaluate_after(transaction_id)

    async def cancel_transaction(
        self,
        transaction_id: uuid.UUID,
        actor_id: str | None = None,
        reason: str = "",
    ) -> EscrowTransaction:
        """Cancel before payment: the hold is released and nothing is charged.

        ``actor_id`` must be the buyer; None means the platform cancels.
        """
        txn = await load_or_raise(self._store, transaction_id)
        if actor_id is not None:
            _require_party(txn, actor_id, PartyRole.BUYER)
        ensure_transition(txn, "cancel")

        if txn.payment_intent_id:
            await self._payments.cancel_payment_hold(
                txn.payment_intent_id, idempotency_key=f"escrow-{txn.id}-cancel"
            )

        async def mutate(current: EscrowTransaction) -> list[EscrowEvent]:
            return [
                transition(
                    current,
                    "cancel",
                    triggered_by=Actor.BUYER if actor_id else Actor.PLATFORM,
                    now=self._clock(),
                    note=reason or "Escrow cancelled before payment",
                )
            ]

        saved = await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.cancelled", transaction_id=str(transaction_id))
        return saved

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------

    async def mark_shipped(
        self,
        transaction_id: uuid.UUID,
        seller_id: str,
        carrier: str,
        tracking_number: str,
        tracking_url: str | None = None,
        estimated_delivery: datetime | None = None,
    ) -> ActionResult:
        """Seller hands the item to a carrier."""
        if not tracking_number:
            raise ValidationError("A tracking number is required", code="MISSING_TRACKING")

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent]:
            _require_party(txn, seller_id, PartyRole.SELLER)
            now = self._clock()
            event = transition(
                txn,
                "ship",
                triggered_by=Actor.SELLER,
                now=now,
                note=f"Shipped with {carrier}",
                data={"carrier": carrier, "tracking_number": tracking_number},
            )
            txn.shipping = ShippingDetails(
                carrier=carrier,
                tracking_number=tracking_number,
                tracking_url=tracking_url,
                estimated_delivery=parse_instant(estimated_delivery),
                shipped_at=now,
            )
            for condition in txn.conditions_of_type(ConditionType.TRACKING_CONFIRMATION):
                condition.config["tracking_number"] = tracking_number
                condition.config["carrier"] = carrier
            return [event]

        saved = await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.shipped", transaction_id=str(transaction_id), carrier=carrier)
        await send_quietly(
            self._notifier,
            saved.buyer_id,
            "item_shipped",
            transaction_id=str(saved.id),
            carrier=carrier,
            tracking_number=tracking_number,
        )
        return await self._evaluate_after(transaction_id)

    async def record_carrier_update(
        self,
        transaction_id: uuid.UUID,
        carrier_status: CarrierStatus,
        occurred_at: datetime | None = None,
        tracking_number: str | None = None,
    ) -> ActionResult:
        """Apply a carrier webhook: ``in_transit`` or ``delivered``.

        Repeated updates for a state the transaction already reached are
        ignored. A delivery reported after the buyer already confirmed is
        recorded without moving the status.
        """
        carrier_status = CarrierStatus(carrier_status)

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent] | None:
            if tracking_number and txn.shipping and tracking_number != txn.shipping.tracking_number:
                raise ValidationError(
                    f"Tracking number {tracking_number} does not belong to this transaction",
                    code="TRACKING_MISMATCH",
                )
            now = self._clock()

            if carrier_status == CarrierStatus.IN_TRANSIT:
                if txn.status in (EscrowStatus.IN_TRANSIT, EscrowStatus.DELIVERED, EscrowStatus.CONFIRMED):
                    return None
                if txn.shipping is not None:
                    txn.shipping.last_carrier_status = carrier_status.value
                return [
                    transition(
                        txn,
                        "mark_in_transit",
                        triggered_by=Actor.WEBHOOK,
                        now=now,
                        note="Carrier reported the parcel in transit",
                    )
                ]

            if txn.status == EscrowStatus.DELIVERED:
                return None
            if txn.status == EscrowStatus.CONFIRMED:
                if txn.shipping is None or txn.shipping.actual_delivery is not None:
                    return None
                delivered_at = parse_instant(occurred_at) or now
                self._record_delivery(txn, delivered_at, start_dispute_clock=False)
                return [
                    audit_event(
                        txn,
                        EventType.DELIVERED,
                        "Carrier confirmed delivery after buyer confirmation",
                        triggered_by=Actor.WEBHOOK,
                        now=now,
                        data={"delivered_at": format_instant(delivered_at)},
                    )
                ]

            ensure_transition(txn, "mark_delivered")
            delivered_at = parse_instant(occurred_at) or now
            self._record_delivery(txn, delivered_at, start_dispute_clock=True)
            return [
                transition(
                    txn,
                    "mark_delivered",
                    triggered_by=Actor.WEBHOOK,
                    now=now,
                    note="Carrier confirmed delivery",
                    data={
                        "delivered_at": format_instant(delivered_at),
                        "dispute_period_ends_at": format_instant(txn.dispute_period_ends_at),
                    },
                )
            ]

        saved = await apply_change(self._store, transaction_id, mutate)
        logger.info(
            "escrow.carrier_update",
            transaction_id=str(transaction_id),
            carrier_status=carrier_status.value,
            status=saved.status.value,
        )
        if carrier_status == CarrierStatus.DELIVERED and saved.status == EscrowStatus.DELIVERED:
            await send_quietly(
                self._notifier,
                saved.buyer_id,
                "item_delivered",
                transaction_id=str(saved.id),
                dispute_period_ends_at=format_instant(saved.dispute_period_ends_at),
            )
        return await self._evaluate_after(transaction_id)

    @staticmethod
    def _record_delivery(txn: EscrowTransaction, delivered_at: datetime, start_dispute_clock: bool) -> None:
        if txn.shipping is None:
            txn.shipping = ShippingDetails(carrier="", tracking_number="")
        txn.shipping.actual_delivery = delivered_at
        txn.shipping.last_carrier_status = CarrierStatus.DELIVERED.value

        for condition in txn.conditions_of_type(ConditionType.TRACKING_CONFIRMATION):
            condition.config["delivery_confirmed"] = True
            condition.config.setdefault("tracking_number", txn.shipping.tracking_number)

        for condition in txn.conditions_of_type(ConditionType.INSPECTION_PERIOD):
            if not condition.config.get("inspection_deadline"):
                days = condition.config.get("inspection_days")
                if days:
                    condition.config["inspection_deadline"] = format_instant(
                        delivered_at + timedelta(days=days)
                    )

        if start_dispute_clock:
            txn.dispute_period_ends_at = delivered_at + timedelta(days=txn.dispute_period_days)

    async def confirm_receipt(self, transaction_id: uuid.UUID, buyer_id: str) -> ActionResult:
        """Buyer confirms the item arrived as described."""

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent]:
            _require_party(txn, buyer_id, PartyRole.BUYER)
            now = self._clock()
            event = transition(
                txn,
                "confirm_receipt",
                triggered_by=Actor.BUYER,
                now=now,
                note="Buyer confirmed receipt",
            )
            if txn.dispute_period_ends_at is None:
                txn.dispute_period_ends_at = now + timedelta(days=txn.dispute_period_days)
            return [event]

        saved = await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.confirmed", transaction_id=str(transaction_id))
        await send_quietly(self._notifier, saved.seller_id, "receipt_confirmed", transaction_id=str(saved.id))
        return await self._evaluate_after(transaction_id)

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_dispute(self, transaction_id: uuid.UUID, buyer_id: str, reason: str) -> EscrowTransaction:
        """Buyer disputes the transaction, freezing any release.

        Allowed only while ``now < dispute_period_ends_at`` once that
        deadline has been set.
        """
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required", code="MISSING_REASON")

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent]:
            _require_party(txn, buyer_id, PartyRole.BUYER)
            ensure_transition(txn, "open_dispute")
            now = self._clock()
            deadline = txn.dispute_period_ends_at
            if deadline is not None and now >= deadline:
                raise DisputePeriodExpiredError(str(txn.id), format_instant(deadline))
            event = transition(
                txn,
                "open_dispute",
                triggered_by=Actor.BUYER,
                now=now,
                note=reason,
                data={"reason": reason},
            )
            txn.dispute_reason = reason
            txn.disputed_at = now
            return [event]

        saved = await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.disputed", transaction_id=str(transaction_id))
        await send_quietly(
            self._notifier, saved.seller_id, "dispute_opened", transaction_id=str(saved.id), reason=reason
        )
        return saved

    async def resolve_dispute(
        self,
        transaction_id: uuid.UUID,
        outcome: DisputeOutcome,
        note: str = "",
        refund_amount: int | None = None,
    ) -> SettlementResult:
        """Platform decision on a disputed transaction: pay the seller or refund the buyer."""
        txn = await load_or_raise(self._store, transaction_id)
        if txn.status in TERMINAL_STATUSES:
            raise TransactionAlreadySettledError(str(txn.id), txn.status.value)
        if txn.status != EscrowStatus.DISPUTED:
            raise InvalidStateTransitionError(txn.status.value, "resolve_dispute")

        if DisputeOutcome(outcome) == DisputeOutcome.RELEASE:
            result = await self._releases.release(
                transaction_id, force=True, triggered_by=Actor.PLATFORM, note=note
            )
        else:
            result = await self._releases.refund(
                transaction_id, amount=refund_amount, reason=note, triggered_by=Actor.PLATFORM
            )
        logger.info("escrow.dispute_resolved", transaction_id=str(transaction_id), outcome=str(outcome))
        return result

    # ------------------------------------------------------------------
    # Fund movement (platform)
    # ------------------------------------------------------------------

    async def release(self, transaction_id: uuid.UUID, note: str = "") -> SettlementResult:
        """Platform-triggered release; the settlement conditions must be met."""
        return await self._releases.release(transaction_id, triggered_by=Actor.PLATFORM, note=note)

    async def refund(
        self,
        transaction_id: uuid.UUID,
        amount: int | None = None,
        reason: str | None = None,
    ) -> SettlementResult:
        return await self._releases.refund(transaction_id, amount=amount, reason=reason)

    async def evaluate(self, transaction_id: uuid.UUID) -> EvaluationResult:
        return await self._settlement.evaluate_all(transaction_id)

    # ------------------------------------------------------------------
    # Condition updates
    # ------------------------------------------------------------------

    async def update_condition(
        self,
        transaction_id: uuid.UUID,
        condition_type: ConditionType | str,
        config_updates: dict[str, Any],
        actor: Actor = Actor.PLATFORM,
    ) -> ActionResult:
        """Merge ``config_updates`` into the first condition of ``condition_type``."""

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent]:
            return [
                self._update_first(txn, str(condition_type), config_updates, actor, "Condition updated")
            ]

        await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.condition_updated", transaction_id=str(transaction_id), condition=str(condition_type))
        return await self._evaluate_after(transaction_id)

    async def complete_milestone(
        self,
        transaction_id: uuid.UUID,
        seller_id: str,
        milestone_id: str,
    ) -> ActionResult:
        """Seller marks one milestone of the milestone condition as done."""

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent] | None:
            _require_party(txn, seller_id, PartyRole.SELLER)
            self._ensure_open(txn)
            matching = txn.conditions_of_type(ConditionType.MILESTONE_BASED)
            if not matching:
                raise ConditionNotFoundError(str(txn.id), ConditionType.MILESTONE_BASED.value)
            milestones = matching[0].config.get("milestones") or []
            milestone = next((m for m in milestones if str(m.get("id")) == str(milestone_id)), None)
            if milestone is None:
                raise ConditionNotFoundError(str(txn.id), f"milestone {milestone_id}")
            if milestone.get("completed") is True:
                return None
            now = self._clock()
            milestone["completed"] = True
            milestone["completed_at"] = format_instant(now)
            txn.updated_at = now
            return [
                audit_event(
                    txn,
                    EventType.CONDITION_UPDATED,
                    f"Milestone completed: {milestone.get('description', milestone_id)}",
                    triggered_by=Actor.SELLER,
                    now=now,
                    data={"milestone_id": str(milestone_id)},
                )
            ]

        await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.milestone_completed", transaction_id=str(transaction_id), milestone_id=milestone_id)
        return await self._evaluate_after(transaction_id)

    async def sign_release(self, transaction_id: uuid.UUID, actor_id: str) -> ActionResult:
        """Buyer or seller signs the dual-signature release."""

        async def mutate(txn: EscrowTransaction) -> list[EscrowEvent]:
            if actor_id == txn.buyer_id:
                field, actor = "buyer_signed", Actor.BUYER
            elif actor_id == txn.seller_id:
                field, actor = "seller_signed", Actor.SELLER
            else:
                raise UnauthorizedActorError(actor_id, "buyer or seller")
            return [
                self._update_first(
                    txn,
                    ConditionType.DUAL_SIGNATURE.value,
                    {field: True},
                    actor,
                    f"Release signed by {actor.value}",
                )
            ]

        await apply_change(self._store, transaction_id, mutate)
        logger.info("escrow.release_signed", transaction_id=str(transaction_id), actor_id=actor_id)
        return await self._evaluate_after(transaction_id)

    def _update_first(
        self,
        txn: EscrowTransaction,
        condition_type: str,
        updates: dict[str, Any],
        actor: Actor,
        description: str,
    ) -> EscrowEvent:
        self._ensure_open(txn)
        matching = txn.conditions_of_type(condition_type)
        if not matching:
            raise ConditionNotFoundError(str(txn.id), condition_type)
        now = self._clock()
        matching[0].config.update(updates)
        txn.updated_at = now
        return audit_event(
            txn,
            EventType.CONDITION_UPDATED,
            description,
            triggered_by=actor,
            now=now,
            data={"type": condition_type, "updates": sorted(updates)},
        )

    @staticmethod
    def _ensure_open(txn: EscrowTransaction) -> None:
        if txn.is_terminal:
            raise TransactionAlreadySettledError(str(txn.id), txn.status.value)

    async def _evaluate_after(self, transaction_id: uuid.UUID) -> ActionResult:
        evaluation = await self._settlement.evaluate_all(transaction_id)
        return ActionResult(
            transaction=await load_or_raise(self._store, transaction_id),
            evaluation=evaluation,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> EscrowTransaction:
        return await load_or_raise(self._store, transaction_id)

    async def get_status(self, transaction_id: uuid.UUID) -> dict[str, Any]:
        """Current status, the events that may fire next and what still blocks release."""
        txn = await load_or_raise(self._store, transaction_id)
        return {
            "transaction_id": str(txn.id),
            "status": txn.status.value,
            "allowed_events": EscrowStateMachine(txn.status.value).get_allowed_events(),
            "all_conditions_met": txn.all_conditions_met,
            "unmet": [] if txn.all_conditions_met else unmet_descriptions(txn.conditions),
            "dispute_period_ends_at": format_instant(txn.dispute_period_ends_at),
            "last_error": txn.last_error,
        }

    async def get_events(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        await load_or_raise(self._store, transaction_id)
        return await self._store.list_events(transaction_id)

    async def list_user_transactions(
        self,
        user_id: str,
        role: PartyRole | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowTransaction]:
        return await self._store.list_by_party(user_id, role=role, limit=limit, offset=offset)

    async def get_platform_config(self) -> PlatformConfig:
        stored = await self._store.get_platform_config()
        return stored or self._default_config

    async def update_platform_config(self, **changes: Any) -> PlatformConfig:
        """Change fee schedule, default periods or bounds for future transactions."""
        current = await self.get_platform_config()
        updated = current.updated(**changes)

        if updated.min_transaction_amount <= 0 or updated.min_transaction_amount > updated.max_transaction_amount:
            raise ValidationError("Transaction bounds must satisfy 0 < min <= max", code="INVALID_CONFIG")
        if updated.platform_fee_percentage < 0 or updated.rail_fee_percentage < 0:
            raise ValidationError("Fee percentages cannot be negative", code="INVALID_CONFIG")
        if updated.platform_fee_fixed < 0 or updated.rail_fee_fixed < 0:
            raise ValidationError("Fixed fees cannot be negative", code="INVALID_CONFIG")
        if min(
            updated.default_dispute_period_days,
            updated.default_auto_release_days,
            updated.default_inspection_days,
        ) <= 0:
            raise ValidationError("Default periods must be positive", code="INVALID_CONFIG")

        saved = await self._store.save_platform_config(updated)
        logger.info("platform_config.updated", changes=sorted(k for k, v in changes.items() if v is not None))
        return saved

