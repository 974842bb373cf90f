"""Settlement Engine — evaluates every condition of a transaction and releases when allowed.

One pass:
    1. Load the transaction (terminal ones are reported as stored).
    2. Evaluate every condition, no short-circuit.
    3. Aggregate and persist conditions + ``all_conditions_met`` together
       with a ``condition_met`` event per newly met condition.
    4. If settleable and the money is releasable, hand over to the
       Release Coordinator. A lost claim, a settled transaction or a rail
       failure is reported in the result, never raised.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime

from escrow_settlement.domain.conditions import (
    ConditionEvaluatorRegistry,
    blocking_conditions,
    default_registry,
    is_settleable,
    unmet_descriptions,
)
from escrow_settlement.domain.enums import PAID_OUT_STATUSES, RELEASABLE_STATUSES, Actor, EventType
from escrow_settlement.domain.exceptions import (
    ConcurrencyError,
    ConditionsNotMetError,
    InvalidStateTransitionError,
    PaymentRailError,
    TransactionAlreadySettledError,
)
from escrow_settlement.domain.lifecycle import audit_event
from escrow_settlement.domain.models import EscrowTransaction, EvaluationResult, utcnow
from escrow_settlement.domain.store_protocol import EscrowStore
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.persistence import apply_change, load_or_raise
from escrow_settlement.services.release_service import ReleaseService

logger = get_logger(__name__)


class SettlementService:
    """Runs condition evaluation passes and triggers releases."""

    def __init__(
        self,
        store: EscrowStore,
        releases: ReleaseService,
        clock: Callable[[], datetime] = utcnow,
        registry: ConditionEvaluatorRegistry | None = None,
    ) -> None:
        self._store = store
        self._releases = releases
        self._clock = clock
        self._registry = registry or default_registry

    @property
    def registry(self) -> ConditionEvaluatorRegistry:
        return self._registry

    async def evaluate_all(self, transaction_id: uuid.UUID, *, auto: bool = False) -> EvaluationResult:
        """Evaluate, persist and (when settleable) release one transaction.

        Args:
            auto: The pass was started by the scheduler sweep; a release made
                by it is recorded as ``auto_released``.
        """
        current = await load_or_raise(self._store, transaction_id)
        if current.is_terminal:
            return self._stored_outcome(current)

        async def evaluate(txn: EscrowTransaction) -> list | None:
            if txn.is_terminal:
                return None
            now = self._clock()
            evaluated = [self._registry.evaluate(c, txn, now) for c in txn.conditions]
            newly_met = [
                after for before, after in zip(txn.conditions, evaluated, strict=True)
                if after.is_met and not before.is_met
            ]
            txn.conditions = evaluated
            txn.all_conditions_met = is_settleable(evaluated)
            return [
                audit_event(
                    txn,
                    EventType.CONDITION_MET,
                    f"Condition met: {condition.description}",
                    triggered_by=Actor.SYSTEM,
                    now=now,
                    data={"type": str(condition.type), "priority": condition.priority},
                )
                for condition in newly_met
            ]

        txn = await apply_change(self._store, transaction_id, evaluate)
        if txn.is_terminal:
            return self._stored_outcome(txn)

        log = logger.bind(transaction_id=str(transaction_id))
        log.debug(
            "settlement.evaluated",
            all_met=txn.all_conditions_met,
            blocking=len(blocking_conditions(txn.conditions)),
        )

        released = False
        release_error = None
        if txn.all_conditions_met and txn.status in RELEASABLE_STATUSES:
            try:
                await self._releases.release(transaction_id, auto=auto, triggered_by=Actor.SYSTEM)
                released = True
            except (
                ConcurrencyError,
                TransactionAlreadySettledError,
                ConditionsNotMetError,
                InvalidStateTransitionError,
            ) as exc:
                log.info("settlement.release_skipped", reason=exc.code)
            except PaymentRailError as exc:
                release_error = exc.message
                log.warning("settlement.release_failed", error=exc.message, code=exc.code)
            txn = await load_or_raise(self._store, transaction_id)

        return EvaluationResult(
            transaction_id=txn.id,
            all_met=txn.all_conditions_met,
            unmet=[] if txn.all_conditions_met else unmet_descriptions(txn.conditions),
            released=released,
            status=txn.status,
            release_error=release_error,
        )

    @staticmethod
    def _stored_outcome(txn: EscrowTransaction) -> EvaluationResult:
        # A paid-out transaction is settled whatever its conditions said (a
        # dispute can be resolved in the seller's favour).
        settled = txn.status in PAID_OUT_STATUSES or txn.all_conditions_met
        return EvaluationResult(
            transaction_id=txn.id,
            all_met=settled,
            unmet=[] if settled else unmet_descriptions(txn.conditions),
            released=False,
            status=txn.status,
        )
