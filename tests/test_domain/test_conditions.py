"""Tests for condition evaluation and aggregation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from escrow_settlement.domain.conditions import (
    NO_CONDITIONS_MESSAGE,
    ConditionEvaluatorRegistry,
    blocking_conditions,
    evaluate_condition,
    is_settleable,
    unmet_descriptions,
)
from escrow_settlement.domain.enums import Combinator, ConditionType, EscrowStatus, ItemType
from escrow_settlement.domain.models import (
    EscrowTransaction,
    SettlementCondition,
    ShippingDetails,
    format_instant,
)

from conftest import START


def _transaction(**overrides) -> EscrowTransaction:  # noqa: ANN003
    fields = {
        "buyer_id": "buyer",
        "seller_id": "seller",
        "seller_destination_id": "acct_1",
        "item_description": "Camera",
        "item_type": ItemType.PHYSICAL_GOODS,
        "amount": 10000,
        "platform_fee": 280,
        "rail_fee": 320,
        "seller_amount": 9400,
        "currency": "usd",
        "dispute_period_days": 7,
        "status": EscrowStatus.PAYMENT_RECEIVED,
    }
    fields.update(overrides)
    return EscrowTransaction(**fields)


def _condition(type_: str, combinator: Combinator = Combinator.ALL_OF, **kwargs) -> SettlementCondition:  # noqa: ANN003
    return SettlementCondition(type=type_, description=kwargs.pop("description", type_), combinator=combinator, **kwargs)


class TestBuiltinChecks:
    def test_tracking_needs_number_and_delivery(self) -> None:
        txn = _transaction()
        condition = _condition(ConditionType.TRACKING_CONFIRMATION, config={"tracking_number": "1Z"})
        assert not evaluate_condition(condition, txn, START).is_met

        condition.config["delivery_confirmed"] = True
        result = evaluate_condition(condition, txn, START)
        assert result.is_met
        assert result.met_at == START

    def test_time_based_is_met_at_the_deadline(self) -> None:
        txn = _transaction()
        deadline = START + timedelta(days=1)
        condition = _condition(ConditionType.TIME_BASED, config={"auto_release_at": format_instant(deadline)})
        assert not evaluate_condition(condition, txn, deadline - timedelta(seconds=1)).is_met
        assert evaluate_condition(condition, txn, deadline).is_met

    def test_buyer_confirmation_follows_status(self) -> None:
        condition = _condition(ConditionType.BUYER_CONFIRMATION)
        assert not evaluate_condition(condition, _transaction(status=EscrowStatus.DELIVERED), START).is_met
        assert evaluate_condition(condition, _transaction(status=EscrowStatus.CONFIRMED), START).is_met

    def test_delivery_confirmation_reads_shipping(self) -> None:
        condition = _condition(ConditionType.DELIVERY_CONFIRMATION)
        shipped = _transaction(shipping=ShippingDetails(carrier="ups", tracking_number="1Z"))
        assert not evaluate_condition(condition, shipped, START).is_met
        shipped.shipping.actual_delivery = START
        assert evaluate_condition(condition, shipped, START).is_met

    def test_milestones_all_completed(self) -> None:
        txn = _transaction()
        milestones = [
            {"id": "1", "description": "Design", "completed": True},
            {"id": "2", "description": "Build", "completed": False},
        ]
        condition = _condition(ConditionType.MILESTONE_BASED, config={"milestones": milestones})
        assert not evaluate_condition(condition, txn, START).is_met
        milestones[1]["completed"] = True
        assert evaluate_condition(condition, txn, START).is_met

    def test_empty_milestone_list_is_not_met(self) -> None:
        condition = _condition(ConditionType.MILESTONE_BASED, config={"milestones": []})
        assert not evaluate_condition(condition, _transaction(), START).is_met

    def test_inspection_period_blocked_by_dispute(self) -> None:
        deadline = format_instant(START - timedelta(hours=1))
        condition = _condition(ConditionType.INSPECTION_PERIOD, config={"inspection_deadline": deadline})
        assert evaluate_condition(condition, _transaction(status=EscrowStatus.DELIVERED), START).is_met
        assert not evaluate_condition(condition, _transaction(status=EscrowStatus.DISPUTED), START).is_met

    def test_inspection_without_deadline_is_not_met(self) -> None:
        condition = _condition(ConditionType.INSPECTION_PERIOD, config={"inspection_days": 3})
        assert not evaluate_condition(condition, _transaction(), START).is_met

    def test_dual_signature_needs_both(self) -> None:
        condition = _condition(ConditionType.DUAL_SIGNATURE, config={"buyer_signed": True})
        assert not evaluate_condition(condition, _transaction(), START).is_met
        condition.config["seller_signed"] = True
        assert evaluate_condition(condition, _transaction(), START).is_met


class TestEvaluationRules:
    def test_met_condition_stays_met(self) -> None:
        earlier = START - timedelta(days=1)
        condition = _condition(ConditionType.BUYER_CONFIRMATION, is_met=True, met_at=earlier)
        result = evaluate_condition(condition, _transaction(status=EscrowStatus.DISPUTED), START)
        assert result.is_met
        assert result.met_at == earlier

    def test_unknown_type_is_not_met(self) -> None:
        condition = _condition("carrier_pigeon")
        assert not evaluate_condition(condition, _transaction(), START).is_met

    def test_malformed_config_is_not_met(self) -> None:
        condition = _condition(ConditionType.TIME_BASED, config={"auto_release_at": "next tuesday"})
        assert not evaluate_condition(condition, _transaction(), START).is_met

    def test_malformed_milestone_entries_are_not_met(self) -> None:
        condition = _condition(ConditionType.MILESTONE_BASED, config={"milestones": ["done"]})
        assert not evaluate_condition(condition, _transaction(), START).is_met

    def test_evaluation_does_not_touch_input(self) -> None:
        condition = _condition(ConditionType.BUYER_CONFIRMATION)
        evaluate_condition(condition, _transaction(status=EscrowStatus.CONFIRMED), START)
        assert condition.is_met is False
        assert condition.met_at is None


class TestCustomEvaluators:
    def test_registered_evaluator_is_used(self) -> None:
        registry = ConditionEvaluatorRegistry()
        registry.register_custom("oracle_ok", lambda c, t, now: c.config.get("ok") is True)
        condition = _condition(ConditionType.CUSTOM, config={"evaluator": "oracle_ok", "ok": True})
        assert registry.evaluate(condition, _transaction(), START).is_met
        assert registry.get_custom_evaluators() == ["oracle_ok"]

    def test_missing_evaluator_is_not_met(self) -> None:
        registry = ConditionEvaluatorRegistry()
        condition = _condition(ConditionType.CUSTOM, config={"evaluator": "nobody"})
        assert not registry.evaluate(condition, _transaction(), START).is_met

    def test_raising_evaluator_is_not_met(self) -> None:
        def broken(condition, transaction, now):  # noqa: ANN001, ANN202
            raise KeyError("score")

        registry = ConditionEvaluatorRegistry({"broken": broken})
        condition = _condition(ConditionType.CUSTOM, config={"evaluator": "broken"})
        assert not registry.evaluate(condition, _transaction(), START).is_met

    def test_registries_do_not_share_custom_checks(self) -> None:
        first = ConditionEvaluatorRegistry()
        first.register_custom("a", lambda c, t, now: True)
        assert ConditionEvaluatorRegistry().get_custom_evaluators() == []

    def test_supported_types(self) -> None:
        supported = ConditionEvaluatorRegistry().get_supported_types()
        assert set(supported) == {c.value for c in ConditionType}


class TestAggregation:
    def test_empty_list_is_never_settleable(self) -> None:
        assert is_settleable([]) is False
        assert unmet_descriptions([]) == [NO_CONDITIONS_MESSAGE]

    def test_all_of_must_all_be_met(self) -> None:
        conditions = [
            _condition(ConditionType.TRACKING_CONFIRMATION, is_met=True),
            _condition(ConditionType.MILESTONE_BASED, description="Milestones"),
        ]
        assert not is_settleable(conditions)
        assert unmet_descriptions(conditions) == ["Milestones"]

    def test_any_of_group_needs_one_member(self) -> None:
        confirm = _condition(ConditionType.BUYER_CONFIRMATION, Combinator.ANY_OF, description="Confirm", priority=2)
        timer = _condition(ConditionType.TIME_BASED, Combinator.ANY_OF, description="Timer", priority=3)
        assert not is_settleable([confirm, timer])
        assert unmet_descriptions([timer, confirm]) == ["Confirm", "Timer"]

        timer.is_met = True
        assert is_settleable([confirm, timer])
        assert blocking_conditions([confirm, timer]) == []

    def test_any_of_groups_are_independent(self) -> None:
        a1 = _condition(ConditionType.BUYER_CONFIRMATION, Combinator.ANY_OF, group="a", is_met=True)
        b1 = _condition(ConditionType.TIME_BASED, Combinator.ANY_OF, group="b")
        assert not is_settleable([a1, b1])
        assert blocking_conditions([a1, b1]) == [b1]

    def test_required_and_optional_mixed(self) -> None:
        tracking = _condition(ConditionType.TRACKING_CONFIRMATION, description="Tracking", priority=1)
        confirm = _condition(
            ConditionType.BUYER_CONFIRMATION, Combinator.ANY_OF, description="Confirm", priority=2, is_met=True
        )
        assert unmet_descriptions([confirm, tracking]) == ["Tracking"]
        tracking.is_met = True
        assert is_settleable([tracking, confirm])


class TestLegacyRequiredFlag:
    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            ({"type": "time_based", "required": True}, Combinator.ALL_OF),
            ({"type": "time_based", "required": False}, Combinator.ANY_OF),
            ({"type": "time_based"}, Combinator.ANY_OF),
            ({"type": "time_based", "required": True, "combinator": "any_of"}, Combinator.ANY_OF),
        ],
    )
    def test_required_maps_to_combinator(self, data: dict, expected: Combinator) -> None:
        assert SettlementCondition.from_dict(data).combinator == expected
