"""Fee arithmetic for escrow transactions.

    platform_fee  = round_half_up(amount * p1 / 100 + f1)
    rail_fee      = round_half_up(amount * p2 / 100 + f2)
    seller_amount = amount - platform_fee - rail_fee

Decimal is used so that percentages like 2.9 do not pick up binary
floating point error before rounding.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from escrow_settlement.domain.exceptions import AmountOutOfBoundsError
from escrow_settlement.domain.models import PlatformConfig


@dataclass(frozen=True)
class FeeBreakdown:
    amount: int
    platform_fee: int
    rail_fee: int
    seller_amount: int


def _fee(amount: int, percentage: float, fixed: int) -> int:
    raw = Decimal(amount) * Decimal(str(percentage)) / Decimal(100) + Decimal(fixed)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_fees(amount: int, config: PlatformConfig) -> FeeBreakdown:
    """Split ``amount`` into platform fee, rail fee and seller amount.

    Raises:
        AmountOutOfBoundsError: If the amount is outside the configured
            bounds or the fees would leave nothing for the seller.
    """
    if not config.min_transaction_amount <= amount <= config.max_transaction_amount:
        raise AmountOutOfBoundsError(
            amount, config.min_transaction_amount, config.max_transaction_amount
        )

    platform_fee = _fee(amount, config.platform_fee_percentage, config.platform_fee_fixed)
    rail_fee = _fee(amount, config.rail_fee_percentage, config.rail_fee_fixed)
    seller_amount = amount - platform_fee - rail_fee

    if seller_amount <= 0:
        raise AmountOutOfBoundsError(
            amount, platform_fee + rail_fee + 1, config.max_transaction_amount
        )

    return FeeBreakdown(
        amount=amount,
        platform_fee=platform_fee,
        rail_fee=rail_fee,
        seller_amount=seller_amount,
    )
