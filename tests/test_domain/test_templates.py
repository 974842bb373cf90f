"""Tests for default condition templates and custom condition parsing."""

from __future__ import annotations

from datetime import timedelta

import pytest

from escrow_settlement.domain.enums import Combinator, ConditionType, ItemType
from escrow_settlement.domain.exceptions import ConditionConfigError
from escrow_settlement.domain.models import PlatformConfig, parse_instant
from escrow_settlement.domain.templates import build_custom_conditions, default_conditions

from conftest import START


def _types(conditions) -> list[str]:  # noqa: ANN001
    return [c.type for c in conditions]


class TestDefaultConditions:
    def test_physical_goods_above_threshold_require_tracking(self) -> None:
        conditions = default_conditions(ItemType.PHYSICAL_GOODS, 10000, PlatformConfig(), START)
        assert _types(conditions) == [
            ConditionType.TRACKING_CONFIRMATION,
            ConditionType.BUYER_CONFIRMATION,
            ConditionType.TIME_BASED,
        ]
        assert conditions[0].combinator == Combinator.ALL_OF
        assert conditions[1].combinator == Combinator.ANY_OF
        assert parse_instant(conditions[2].config["auto_release_at"]) == START + timedelta(days=14)

    def test_physical_goods_below_threshold_make_tracking_optional(self) -> None:
        conditions = default_conditions(ItemType.PHYSICAL_GOODS, 4999, PlatformConfig(), START)
        assert conditions[0].combinator == Combinator.ANY_OF

    def test_threshold_is_inclusive(self) -> None:
        conditions = default_conditions(ItemType.PHYSICAL_GOODS, 5000, PlatformConfig(), START)
        assert conditions[0].combinator == Combinator.ALL_OF

    def test_digital_goods_release_after_48_hours(self) -> None:
        conditions = default_conditions(ItemType.DIGITAL_GOODS, 2500, PlatformConfig(), START)
        assert _types(conditions) == [ConditionType.BUYER_CONFIRMATION, ConditionType.TIME_BASED]
        assert parse_instant(conditions[1].config["auto_release_at"]) == START + timedelta(hours=48)

    def test_service_needs_milestone_and_confirmation(self) -> None:
        conditions = default_conditions(ItemType.SERVICE, 50000, PlatformConfig(), START)
        assert _types(conditions) == [ConditionType.MILESTONE_BASED, ConditionType.BUYER_CONFIRMATION]
        assert all(c.combinator == Combinator.ALL_OF for c in conditions)
        assert conditions[0].config["milestones"][0]["completed"] is False

    def test_other_items_only_auto_release(self) -> None:
        config = PlatformConfig(default_auto_release_days=30)
        conditions = default_conditions(ItemType.SUBSCRIPTION, 1000, config, START)
        assert _types(conditions) == [ConditionType.TIME_BASED]
        assert parse_instant(conditions[0].config["auto_release_at"]) == START + timedelta(days=30)

    def test_new_conditions_are_unmet(self) -> None:
        for item_type in ItemType:
            assert not any(c.is_met for c in default_conditions(item_type, 10000, PlatformConfig(), START))


class TestCustomConditions:
    def test_relative_auto_release_is_resolved(self) -> None:
        [condition] = build_custom_conditions(
            [{"type": "time_based", "config": {"auto_release_days": 3}}], START
        )
        assert parse_instant(condition.config["auto_release_at"]) == START + timedelta(days=3)

    def test_caller_cannot_mark_conditions_met(self) -> None:
        [condition] = build_custom_conditions(
            [{"type": "buyer_confirmation", "is_met": True, "met_at": "2020-01-01T00:00:00Z"}], START
        )
        assert condition.is_met is False
        assert condition.met_at is None

    def test_inspection_days_default(self) -> None:
        [condition] = build_custom_conditions([{"type": "inspection_period"}], START, default_inspection_days=5)
        assert condition.config["inspection_days"] == 5
        assert "inspection_deadline" not in condition.config

    def test_explicit_inspection_deadline_kept(self) -> None:
        [condition] = build_custom_conditions(
            [{"type": "inspection_period", "config": {"inspection_deadline": "2026-03-10T00:00:00Z"}}],
            START,
            default_inspection_days=5,
        )
        assert parse_instant(condition.config["inspection_deadline"]).day == 10
        assert "inspection_days" not in condition.config

    def test_priority_defaults_to_position(self) -> None:
        conditions = build_custom_conditions(
            [{"type": "buyer_confirmation"}, {"type": "time_based", "config": {"auto_release_days": 1}}],
            START,
        )
        assert [c.priority for c in conditions] == [1, 2]

    def test_group_and_combinator_are_kept(self) -> None:
        [condition] = build_custom_conditions(
            [{"type": "dual_signature", "combinator": "any_of", "group": "sign-off"}], START
        )
        assert condition.combinator == Combinator.ANY_OF
        assert condition.group == "sign-off"

    @pytest.mark.parametrize(
        "specs",
        [
            [],
            [{"config": {}}],
            [{"type": "teleport"}],
            [{"type": "time_based", "combinator": "some_of"}],
            [{"type": "milestone_based", "config": {"milestones": [{"id": "1"}]}}],
            [{"type": "time_based", "config": {"auto_release_days": -1}}],
        ],
    )
    def test_invalid_specs_rejected(self, specs: list) -> None:
        with pytest.raises(ConditionConfigError) as exc_info:
            build_custom_conditions(specs, START)
        assert exc_info.value.errors

    def test_bad_timestamp_rejected(self) -> None:
        with pytest.raises(ConditionConfigError, match="invalid timestamp"):
            build_custom_conditions([{"type": "time_based", "config": {"auto_release_at": "soon"}}], START)
