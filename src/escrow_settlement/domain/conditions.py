"""Settlement condition evaluation and aggregation.

Evaluation:
    Each condition type maps to a check function
    ``(condition, transaction, now) -> bool``. The ConditionEvaluatorRegistry
    dispatches on ``condition.type`` the same way for built-in and custom
    ("smart contract") conditions; custom checks are looked up by the
    ``config["evaluator"]`` name. Anything unknown, missing or malformed
    evaluates to not met; evaluation never raises.

Aggregation:
    every ALL_OF condition met
    AND every ANY_OF group (keyed by ``condition.group``) has a met member.
    An empty condition list is never settleable.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING

from escrow_settlement.domain.enums import ConditionType, EscrowStatus
from escrow_settlement.domain.models import parse_instant
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from escrow_settlement.domain.models import EscrowTransaction, SettlementCondition

logger = get_logger(__name__)

ConditionCheck = Callable[["SettlementCondition", "EscrowTransaction", "datetime"], bool]

NO_CONDITIONS_MESSAGE = "No settlement conditions are attached to this transaction"


# ---------------------------------------------------------------------------
# Built-in checks
# ---------------------------------------------------------------------------
def _tracking_confirmation(condition, transaction, now) -> bool:  # noqa: ANN001
    config = condition.config
    return bool(config.get("tracking_number")) and config.get("delivery_confirmed") is True


def _time_based(condition, transaction, now) -> bool:  # noqa: ANN001
    release_at = parse_instant(condition.config.get("auto_release_at"))
    return release_at is not None and now >= release_at


def _buyer_confirmation(condition, transaction, now) -> bool:  # noqa: ANN001
    return transaction.status == EscrowStatus.CONFIRMED


def _delivery_confirmation(condition, transaction, now) -> bool:  # noqa: ANN001
    return transaction.shipping is not None and transaction.shipping.actual_delivery is not None


def _milestone_based(condition, transaction, now) -> bool:  # noqa: ANN001
    milestones = condition.config.get("milestones")
    if not isinstance(milestones, list) or not milestones:
        return False
    return all(milestone.get("completed") is True for milestone in milestones)


def _inspection_period(condition, transaction, now) -> bool:  # noqa: ANN001
    deadline = parse_instant(condition.config.get("inspection_deadline"))
    if deadline is None:
        return False
    return now >= deadline and transaction.status != EscrowStatus.DISPUTED


def _dual_signature(condition, transaction, now) -> bool:  # noqa: ANN001
    config = condition.config
    return config.get("buyer_signed") is True and config.get("seller_signed") is True


class ConditionEvaluatorRegistry:
    """Dispatches settlement conditions to their check functions.

    Usage:
        registry = ConditionEvaluatorRegistry()
        registry.register_custom("oracle_ok", lambda c, t, now: c.config.get("ok") is True)
        evaluated = registry.evaluate(condition, transaction, now)
    """

    _builtin: dict[str, ConditionCheck] = {
        ConditionType.TRACKING_CONFIRMATION.value: _tracking_confirmation,
        ConditionType.TIME_BASED.value: _time_based,
        ConditionType.BUYER_CONFIRMATION.value: _buyer_confirmation,
        ConditionType.DELIVERY_CONFIRMATION.value: _delivery_confirmation,
        ConditionType.MILESTONE_BASED.value: _milestone_based,
        ConditionType.INSPECTION_PERIOD.value: _inspection_period,
        ConditionType.DUAL_SIGNATURE.value: _dual_signature,
    }

    def __init__(self, custom: dict[str, ConditionCheck] | None = None) -> None:
        self._custom: dict[str, ConditionCheck] = dict(custom or {})

    def register_custom(self, name: str, check: ConditionCheck) -> None:
        """Register a check for ``custom`` conditions whose config names ``name``."""
        self._custom[name] = check

    def get_supported_types(self) -> list[str]:
        return [*self._builtin.keys(), ConditionType.CUSTOM.value]

    def get_custom_evaluators(self) -> list[str]:
        return list(self._custom.keys())

    def check_for(self, condition: SettlementCondition) -> ConditionCheck | None:
        if condition.type == ConditionType.CUSTOM:
            return self._custom.get(str(condition.config.get("evaluator", "")))
        return self._builtin.get(str(condition.type))

    def evaluate(
        self,
        condition: SettlementCondition,
        transaction: EscrowTransaction,
        now: datetime,
    ) -> SettlementCondition:
        """Return a copy of ``condition`` with is_met/met_at brought up to date.

        The transaction is read, never written. A condition that was met
        before stays met.
        """
        config = copy.deepcopy(condition.config)

        if condition.is_met:
            return replace(condition, config=config, met_at=condition.met_at or now)

        check = self.check_for(condition)
        if check is None:
            logger.debug(
                "condition.no_evaluator",
                condition_type=str(condition.type),
                transaction_id=str(transaction.id),
            )
            return replace(condition, config=config, is_met=False, met_at=None)

        try:
            is_met = check(condition, transaction, now) is True
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "condition.malformed_config",
                condition_type=str(condition.type),
                transaction_id=str(transaction.id),
                error=str(exc),
            )
            is_met = False

        return replace(
            condition,
            config=config,
            is_met=is_met,
            met_at=now if is_met else None,
        )


default_registry = ConditionEvaluatorRegistry()


def evaluate_condition(
    condition: SettlementCondition,
    transaction: EscrowTransaction,
    now: datetime,
    registry: ConditionEvaluatorRegistry | None = None,
) -> SettlementCondition:
    """Evaluate one condition against a transaction snapshot at ``now``."""
    return (registry or default_registry).evaluate(condition, transaction, now)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def blocking_conditions(conditions: list[SettlementCondition]) -> list[SettlementCondition]:
    """Return the conditions currently standing in the way of settlement.

    Unmet ALL_OF conditions block on their own. ANY_OF conditions block
    only as a whole group, when none of the group's members is met.
    """
    blocking = [c for c in conditions if c.required and not c.is_met]

    groups: dict[str, list[SettlementCondition]] = {}
    for condition in conditions:
        if not condition.required:
            groups.setdefault(condition.group, []).append(condition)

    for members in groups.values():
        if not any(member.is_met for member in members):
            blocking.extend(members)

    return sorted(blocking, key=lambda c: c.priority)


def is_settleable(conditions: list[SettlementCondition]) -> bool:
    return bool(conditions) and not blocking_conditions(conditions)


def unmet_descriptions(conditions: list[SettlementCondition]) -> list[str]:
    if not conditions:
        return [NO_CONDITIONS_MESSAGE]
    return [c.description for c in blocking_conditions(conditions)]
