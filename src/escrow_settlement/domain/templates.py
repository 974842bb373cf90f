"""Default settlement condition templates and custom condition parsing.

Templates by item type:
    physical_goods  tracking (all-of above ``requires_tracking_above``),
                    buyer confirmation, auto-release after the default period
    digital_goods   buyer confirmation or auto-release after 48 hours
    service         completed milestone AND buyer confirmation
    other           auto-release after the default period

Caller-supplied conditions are validated with a JSON Schema before they are
turned into SettlementCondition values.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from jsonschema import Draft7Validator

from escrow_settlement.domain.enums import Combinator, ConditionType, ItemType
from escrow_settlement.domain.exceptions import ConditionConfigError
from escrow_settlement.domain.models import (
    PlatformConfig,
    SettlementCondition,
    format_instant,
    parse_instant,
)
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)

DIGITAL_GOODS_RELEASE_HOURS = 48

CONDITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"enum": [t.value for t in ConditionType]},
        "description": {"type": "string", "maxLength": 500},
        "priority": {"type": "integer", "minimum": 1},
        "combinator": {"enum": [c.value for c in Combinator]},
        "required": {"type": "boolean"},
        "group": {"type": "string", "minLength": 1, "maxLength": 64},
        "config": {
            "type": "object",
            "properties": {
                "auto_release_at": {"type": "string"},
                "auto_release_days": {"type": "number", "exclusiveMinimum": 0},
                "inspection_deadline": {"type": "string"},
                "inspection_days": {"type": "number", "exclusiveMinimum": 0},
                "tracking_number": {"type": "string"},
                "evaluator": {"type": "string", "minLength": 1},
                "milestones": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["id", "description"],
                        "properties": {
                            "id": {"type": "string"},
                            "description": {"type": "string"},
                            "percentage": {"type": "number", "minimum": 0, "maximum": 100},
                            "completed": {"type": "boolean"},
                        },
                    },
                },
            },
        },
    },
}

CONDITIONS_SCHEMA: dict[str, Any] = {
    "type": "array",
    "minItems": 1,
    "items": CONDITION_SCHEMA,
}

_validator = Draft7Validator(CONDITIONS_SCHEMA)


def _time_based(description: str, release_at: datetime, days: float, priority: int) -> SettlementCondition:
    return SettlementCondition(
        type=ConditionType.TIME_BASED,
        description=description,
        priority=priority,
        config={
            "auto_release_days": days,
            "auto_release_at": format_instant(release_at),
        },
    )


def _buyer_confirmation(description: str, priority: int, combinator: Combinator = Combinator.ANY_OF) -> SettlementCondition:
    return SettlementCondition(
        type=ConditionType.BUYER_CONFIRMATION,
        description=description,
        priority=priority,
        combinator=combinator,
        config={"confirmation_required": True},
    )


def default_conditions(
    item_type: ItemType,
    amount: int,
    config: PlatformConfig,
    now: datetime,
) -> list[SettlementCondition]:
    """Build the condition list a new transaction gets when none is supplied."""
    auto_release_days = config.default_auto_release_days
    auto_release_at = now + timedelta(days=auto_release_days)

    if item_type == ItemType.PHYSICAL_GOODS:
        tracking_combinator = (
            Combinator.ALL_OF if amount >= config.requires_tracking_above else Combinator.ANY_OF
        )
        return [
            SettlementCondition(
                type=ConditionType.TRACKING_CONFIRMATION,
                description="Seller must provide tracking and item must be delivered",
                priority=1,
                combinator=tracking_combinator,
                config={"require_tracking": True},
            ),
            _buyer_confirmation("Buyer must confirm receipt", priority=2),
            _time_based(
                f"Auto-release after {auto_release_days} days if no dispute",
                auto_release_at,
                auto_release_days,
                priority=3,
            ),
        ]

    if item_type == ItemType.DIGITAL_GOODS:
        return [
            _buyer_confirmation("Buyer must confirm receipt", priority=1),
            _time_based(
                f"Auto-release after {DIGITAL_GOODS_RELEASE_HOURS} hours if no dispute",
                now + timedelta(hours=DIGITAL_GOODS_RELEASE_HOURS),
                DIGITAL_GOODS_RELEASE_HOURS / 24,
                priority=2,
            ),
        ]

    if item_type == ItemType.SERVICE:
        return [
            SettlementCondition(
                type=ConditionType.MILESTONE_BASED,
                description="All service milestones must be completed",
                priority=1,
                combinator=Combinator.ALL_OF,
                config={
                    "milestones": [
                        {
                            "id": "1",
                            "description": "Service completed",
                            "percentage": 100,
                            "completed": False,
                        }
                    ]
                },
            ),
            _buyer_confirmation(
                "Buyer must confirm completion", priority=2, combinator=Combinator.ALL_OF
            ),
        ]

    return [
        _time_based(
            f"Auto-release after {auto_release_days} days",
            auto_release_at,
            auto_release_days,
            priority=1,
        )
    ]


def build_custom_conditions(
    entries: list[dict[str, Any]],
    now: datetime,
    default_inspection_days: int | None = None,
) -> list[SettlementCondition]:
    """Validate caller-supplied condition dicts and turn them into conditions.

    A relative ``auto_release_days`` is resolved against ``now`` when no
    absolute ``auto_release_at`` is given. Inspection
    periods without a deadline keep ``inspection_days`` (defaulting to
    ``default_inspection_days``); their deadline is set on delivery. Whether a
    condition is met is never taken from the caller.

    Raises:
        ConditionConfigError: If the list does not match CONDITIONS_SCHEMA or
            carries an unparseable timestamp.
    """
    errors = sorted(_validator.iter_errors(entries), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors]
        logger.info("conditions.validation_failed", error_count=len(errors))
        raise ConditionConfigError(
            f"Settlement conditions failed validation with {len(errors)} error(s)",
            errors=messages,
        )

    conditions = []
    for index, entry in enumerate(entries):
        data = {**entry, "is_met": False, "met_at": None}
        config = dict(entry.get("config") or {})

        try:
            if entry["type"] == ConditionType.TIME_BASED:
                if config.get("auto_release_at"):
                    config["auto_release_at"] = format_instant(parse_instant(config["auto_release_at"]))
                elif config.get("auto_release_days"):
                    config["auto_release_at"] = format_instant(
                        now + timedelta(days=config["auto_release_days"])
                    )
            if entry["type"] == ConditionType.INSPECTION_PERIOD:
                if config.get("inspection_deadline"):
                    config["inspection_deadline"] = format_instant(
                        parse_instant(config["inspection_deadline"])
                    )
                elif default_inspection_days is not None:
                    config.setdefault("inspection_days", default_inspection_days)
        except (TypeError, ValueError) as exc:
            raise ConditionConfigError(
                f"Condition {index + 1} has an invalid timestamp: {exc}",
                errors=[str(exc)],
            ) from exc

        data["config"] = config
        conditions.append(SettlementCondition.from_dict(data, index))

    return conditions
