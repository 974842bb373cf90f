"""Pydantic API schemas."""

from escrow_settlement.schemas.escrow import (
    ActorRequest,
    CancelRequest,
    CarrierUpdateRequest,
    ConditionUpdateRequest,
    ConfirmReceiptRequest,
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowResponse,
    EvaluationResponse,
    HealthResponse,
    MilestoneCompleteRequest,
    OpenDisputeRequest,
    PlatformConfigResponse,
    PlatformConfigUpdate,
    RefundRequest,
    ReleaseRequest,
    ResolveDisputeRequest,
    SettlementResponse,
    ShipRequest,
    SignReleaseRequest,
    SupportedConditionsResponse,
    TransactionEnvelope,
    TransactionStatusResponse,
    UserTransactionsResponse,
)

__all__ = [
    "ActorRequest",
    "CancelRequest",
    "CarrierUpdateRequest",
    "ConditionUpdateRequest",
    "ConfirmReceiptRequest",
    "CreateEscrowRequest",
    "EscrowEventResponse",
    "EscrowResponse",
    "EvaluationResponse",
    "HealthResponse",
    "MilestoneCompleteRequest",
    "OpenDisputeRequest",
    "PlatformConfigResponse",
    "PlatformConfigUpdate",
    "RefundRequest",
    "ReleaseRequest",
    "ResolveDisputeRequest",
    "SettlementResponse",
    "ShipRequest",
    "SignReleaseRequest",
    "SupportedConditionsResponse",
    "TransactionEnvelope",
    "TransactionStatusResponse",
    "UserTransactionsResponse",
]
