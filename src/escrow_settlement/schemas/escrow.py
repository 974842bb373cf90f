"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain dataclasses and the ORM records; responses are
validated from ``EscrowTransaction.to_dict()`` so the wire format and the
stored document stay the same shape.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from escrow_settlement.domain.enums import (
    CarrierStatus,
    DisputeOutcome,
    EscrowStatus,
    ItemType,
    PartyRole,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for creating a new escrow transaction."""

    buyer_id: str = Field(..., min_length=1, max_length=255, examples=["buyer_123"])
    seller_id: str = Field(..., min_length=1, max_length=255, examples=["seller_456"])
    seller_destination_id: str = Field(
        ...,
        min_length=1,
        description="Connected account on the payment rail that receives the seller amount",
        examples=["acct_1NvHkU2eZvKYlo2C"],
    )
    amount: int = Field(
        ...,
        gt=0,
        description="Amount in minor currency units (cents)",
        examples=[10000],
    )
    currency: str = Field(default="usd", min_length=3, max_length=3)
    item_description: str = Field(..., min_length=1, max_length=5000, examples=["Vintage camera"])
    item_type: ItemType = ItemType.PHYSICAL_GOODS
    conditions: list[dict[str, Any]] | None = Field(
        default=None,
        description=(
            "Custom settlement conditions. Omit to use the defaults for the item type. "
            'Example: [{"type": "buyer_confirmation", "combinator": "all_of"}]'
        ),
    )
    dispute_period_days: int | None = Field(default=None, ge=1, le=365)
    metadata: dict[str, Any] | None = None
    idempotency_key: str | None = Field(
        default=None,
        description="Optional idempotency key to prevent duplicate transaction creation",
    )


class ActorRequest(BaseModel):
    """Body for operations that only need to know who is acting."""

    actor_id: str | None = Field(default=None, description="Buyer/seller id; omit for platform actions")


class CancelRequest(ActorRequest):
    reason: str = Field(default="", max_length=2000)


class ShipRequest(BaseModel):
    """Seller shipment details."""

    seller_id: str = Field(..., min_length=1)
    carrier: str = Field(..., min_length=1, examples=["ups"])
    tracking_number: str = Field(..., min_length=1, examples=["1Z999AA10123456784"])
    tracking_url: str | None = None
    estimated_delivery: datetime | None = None


class CarrierUpdateRequest(BaseModel):
    """Carrier webhook payload."""

    status: CarrierStatus
    occurred_at: datetime | None = None
    tracking_number: str | None = None


class ConfirmReceiptRequest(BaseModel):
    buyer_id: str = Field(..., min_length=1)


class OpenDisputeRequest(BaseModel):
    """Request body for a buyer opening a dispute."""

    buyer_id: str = Field(..., min_length=1)
    reason: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        examples=["Item arrived damaged"],
    )


class ResolveDisputeRequest(BaseModel):
    """Platform decision on a disputed transaction."""

    outcome: DisputeOutcome
    note: str = Field(default="", max_length=5000)
    refund_amount: int | None = Field(default=None, gt=0, description="Partial refund in minor units")


class ReleaseRequest(BaseModel):
    note: str = Field(default="", max_length=2000)


class RefundRequest(BaseModel):
    amount: int | None = Field(default=None, gt=0, description="Omit for a full refund")
    reason: str | None = Field(default=None, max_length=2000)


class ConditionUpdateRequest(BaseModel):
    """Merge keys into the config of the first condition of a type."""

    config: dict[str, Any] = Field(..., min_length=1)


class MilestoneCompleteRequest(BaseModel):
    seller_id: str = Field(..., min_length=1)


class SignReleaseRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)


class PlatformConfigUpdate(BaseModel):
    """Partial update of the platform configuration; omitted fields are unchanged."""

    platform_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    platform_fee_fixed: int | None = Field(default=None, ge=0)
    rail_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    rail_fee_fixed: int | None = Field(default=None, ge=0)
    default_dispute_period_days: int | None = Field(default=None, ge=1)
    default_auto_release_days: int | None = Field(default=None, ge=1)
    default_inspection_days: int | None = Field(default=None, ge=1)
    min_transaction_amount: int | None = Field(default=None, gt=0)
    max_transaction_amount: int | None = Field(default=None, gt=0)
    requires_tracking_above: int | None = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ConditionResponse(BaseModel):
    type: str
    description: str
    priority: int
    combinator: str
    group: str
    config: dict[str, Any]
    is_met: bool
    met_at: datetime | None = None


class StatusHistoryResponse(BaseModel):
    status: EscrowStatus
    timestamp: datetime
    triggered_by: str
    note: str = ""


class ShippingResponse(BaseModel):
    carrier: str
    tracking_number: str
    tracking_url: str | None = None
    estimated_delivery: datetime | None = None
    shipped_at: datetime | None = None
    actual_delivery: datetime | None = None
    last_carrier_status: str | None = None


class EscrowResponse(BaseModel):
    """Full escrow transaction representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: str
    seller_id: str
    seller_destination_id: str
    item_description: str
    item_type: ItemType
    amount: int
    platform_fee: int
    rail_fee: int
    seller_amount: int
    currency: str
    dispute_period_days: int
    status: EscrowStatus
    status_history: list[StatusHistoryResponse]
    conditions: list[ConditionResponse]
    all_conditions_met: bool
    metadata: dict[str, Any]
    payment_intent_id: str | None = None
    charge_id: str | None = None
    transfer_id: str | None = None
    payout_id: str | None = None
    refund_id: str | None = None
    refunded_amount: int | None = None
    shipping: ShippingResponse | None = None
    dispute_reason: str | None = None
    disputed_at: datetime | None = None
    dispute_resolution: dict[str, Any] | None = None
    dispute_period_ends_at: datetime | None = None
    last_error: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class EvaluationResponse(BaseModel):
    transaction_id: uuid.UUID
    all_met: bool
    unmet: list[str]
    released: bool
    status: EscrowStatus
    release_error: str | None = None


class TransactionEnvelope(BaseModel):
    """Lifecycle operation result: the transaction plus any evaluation it triggered."""

    success: bool = True
    transaction: EscrowResponse
    evaluation: EvaluationResponse | None = None


class SettlementResponse(BaseModel):
    success: bool = True
    transaction_id: uuid.UUID
    status: EscrowStatus
    transfer_id: str | None = None
    payout_id: str | None = None
    refund_id: str | None = None
    amount: int


class EscrowEventResponse(BaseModel):
    """Audit event representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    event_type: str
    description: str
    triggered_by: str
    data: dict[str, Any]
    created_at: datetime


class TransactionStatusResponse(BaseModel):
    """Lightweight status check with what blocks release."""

    transaction_id: uuid.UUID
    status: EscrowStatus
    allowed_events: list[str]
    all_conditions_met: bool
    unmet: list[str]
    dispute_period_ends_at: datetime | None = None
    last_error: str | None = None


class UserTransactionsResponse(BaseModel):
    success: bool = True
    user_id: str
    role: PartyRole | None = None
    transactions: list[EscrowResponse]


class PlatformConfigResponse(BaseModel):
    platform_fee_percentage: float
    platform_fee_fixed: int
    rail_fee_percentage: float
    rail_fee_fixed: int
    default_dispute_period_days: int
    default_auto_release_days: int
    default_inspection_days: int
    min_transaction_amount: int
    max_transaction_amount: int
    requires_tracking_above: int


class SupportedConditionsResponse(BaseModel):
    builtin: list[str]
    custom: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    redis: str
