"""Escrow transaction REST API routes.

Every handler is a thin adapter over EscrowService: parse the body, call one
service method, shape the response. Domain errors are translated to HTTP by
ErrorHandlerMiddleware.

Routes:
    POST   /api/v1/escrow                                 — Create a transaction (card hold)
    GET    /api/v1/escrow/{id}                            — Get transaction details
    GET    /api/v1/escrow/{id}/status                     — Status, allowed events, unmet conditions
    GET    /api/v1/escrow/{id}/events                     — Audit trail
    POST   /api/v1/escrow/{id}/capture-payment            — Capture the held payment
    POST   /api/v1/escrow/{id}/cancel                     — Cancel before payment
    POST   /api/v1/escrow/{id}/ship                       — Seller ships
    POST   /api/v1/escrow/{id}/carrier-update             — Carrier webhook
    POST   /api/v1/escrow/{id}/confirm                    — Buyer confirms receipt
    POST   /api/v1/escrow/{id}/dispute                    — Buyer opens a dispute
    POST   /api/v1/escrow/{id}/resolve-dispute            — Platform resolves a dispute
    POST   /api/v1/escrow/{id}/evaluate                   — Run an evaluation pass
    POST   /api/v1/escrow/{id}/release                    — Platform release
    POST   /api/v1/escrow/{id}/refund                     — Platform refund
    PATCH  /api/v1/escrow/{id}/conditions/{type}          — Update a condition's config
    POST   /api/v1/escrow/{id}/milestones/{mid}/complete  — Seller completes a milestone
    POST   /api/v1/escrow/{id}/sign                       — Dual-signature release
    GET    /api/v1/escrow/users/{user_id}/transactions    — A user's transactions
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from escrow_settlement.api.deps import get_escrow_service
from escrow_settlement.domain.enums import PartyRole
from escrow_settlement.domain.models import (
    ActionResult,
    EscrowEvent,
    EscrowTransaction,
    SettlementResult,
)
from escrow_settlement.logging_config import get_logger
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
    MilestoneCompleteRequest,
    OpenDisputeRequest,
    RefundRequest,
    ReleaseRequest,
    ResolveDisputeRequest,
    SettlementResponse,
    ShipRequest,
    SignReleaseRequest,
    TransactionEnvelope,
    TransactionStatusResponse,
    UserTransactionsResponse,
)
from escrow_settlement.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


def _transaction(txn: EscrowTransaction) -> EscrowResponse:
    return EscrowResponse.model_validate(txn.to_dict())


def _envelope(result: ActionResult | EscrowTransaction) -> TransactionEnvelope:
    if isinstance(result, EscrowTransaction):
        return TransactionEnvelope(transaction=_transaction(result))
    evaluation = result.evaluation
    return TransactionEnvelope(
        transaction=_transaction(result.transaction),
        evaluation=EvaluationResponse.model_validate(evaluation.to_dict()) if evaluation else None,
    )


def _settlement(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        transaction_id=result.transaction_id,
        status=result.status,
        transfer_id=result.transfer_id,
        payout_id=result.payout_id,
        refund_id=result.refund_id,
        amount=result.amount,
    )


def _event(event: EscrowEvent) -> EscrowEventResponse:
    return EscrowEventResponse(
        id=event.id,
        transaction_id=event.transaction_id,
        event_type=event.event_type.value,
        description=event.description,
        triggered_by=event.triggered_by.value,
        data=event.data,
        created_at=event.created_at,
    )


# ---------------------------------------------------------------------------
# Create & payment
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionEnvelope,
    status_code=201,
    summary="Create a new escrow transaction",
)
async def create_escrow(
    request: CreateEscrowRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    """Create a transaction in pending_payment and place a card hold for the amount."""
    txn = await service.create_transaction(
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        seller_destination_id=request.seller_destination_id,
        amount=request.amount,
        item_description=request.item_description,
        item_type=request.item_type,
        currency=request.currency,
        conditions=request.conditions,
        dispute_period_days=request.dispute_period_days,
        metadata=request.metadata,
        idempotency_key=request.idempotency_key,
    )
    return _envelope(txn)


@router.post(
    "/{transaction_id}/capture-payment",
    response_model=TransactionEnvelope,
    summary="Capture the buyer's held payment",
)
async def capture_payment(
    transaction_id: uuid.UUID,
    request: ActorRequest | None = None,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    actor_id = request.actor_id if request else None
    return _envelope(await service.capture_payment(transaction_id, actor_id=actor_id))


@router.post(
    "/{transaction_id}/cancel",
    response_model=TransactionEnvelope,
    summary="Cancel a transaction before payment",
)
async def cancel_escrow(
    transaction_id: uuid.UUID,
    request: CancelRequest | None = None,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    request = request or CancelRequest()
    txn = await service.cancel_transaction(transaction_id, actor_id=request.actor_id, reason=request.reason)
    return _envelope(txn)


# ---------------------------------------------------------------------------
# Fulfilment
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/ship",
    response_model=TransactionEnvelope,
    summary="Seller marks the item as shipped",
)
async def mark_shipped(
    transaction_id: uuid.UUID,
    request: ShipRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    result = await service.mark_shipped(
        transaction_id,
        seller_id=request.seller_id,
        carrier=request.carrier,
        tracking_number=request.tracking_number,
        tracking_url=request.tracking_url,
        estimated_delivery=request.estimated_delivery,
    )
    return _envelope(result)


@router.post(
    "/{transaction_id}/carrier-update",
    response_model=TransactionEnvelope,
    summary="Carrier tracking webhook",
)
async def carrier_update(
    transaction_id: uuid.UUID,
    request: CarrierUpdateRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    logger.info("webhook.carrier_update", transaction_id=str(transaction_id), status=request.status.value)
    result = await service.record_carrier_update(
        transaction_id,
        request.status,
        occurred_at=request.occurred_at,
        tracking_number=request.tracking_number,
    )
    return _envelope(result)


@router.post(
    "/{transaction_id}/confirm",
    response_model=TransactionEnvelope,
    summary="Buyer confirms receipt",
)
async def confirm_receipt(
    transaction_id: uuid.UUID,
    request: ConfirmReceiptRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    return _envelope(await service.confirm_receipt(transaction_id, buyer_id=request.buyer_id))


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/dispute",
    response_model=TransactionEnvelope,
    summary="Buyer opens a dispute",
)
async def open_dispute(
    transaction_id: uuid.UUID,
    request: OpenDisputeRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    txn = await service.open_dispute(transaction_id, buyer_id=request.buyer_id, reason=request.reason)
    return _envelope(txn)


@router.post(
    "/{transaction_id}/resolve-dispute",
    response_model=SettlementResponse,
    summary="Platform resolves a dispute",
)
async def resolve_dispute(
    transaction_id: uuid.UUID,
    request: ResolveDisputeRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> SettlementResponse:
    result = await service.resolve_dispute(
        transaction_id,
        outcome=request.outcome,
        note=request.note,
        refund_amount=request.refund_amount,
    )
    return _settlement(result)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/evaluate",
    response_model=EvaluationResponse,
    summary="Evaluate conditions and release when they are met",
)
async def evaluate(
    transaction_id: uuid.UUID,
    service: EscrowService = Depends(get_escrow_service),
) -> EvaluationResponse:
    result = await service.evaluate(transaction_id)
    return EvaluationResponse.model_validate(result.to_dict())


@router.post(
    "/{transaction_id}/release",
    response_model=SettlementResponse,
    summary="Release funds to the seller",
)
async def release(
    transaction_id: uuid.UUID,
    request: ReleaseRequest | None = None,
    service: EscrowService = Depends(get_escrow_service),
) -> SettlementResponse:
    note = request.note if request else ""
    return _settlement(await service.release(transaction_id, note=note))


@router.post(
    "/{transaction_id}/refund",
    response_model=SettlementResponse,
    summary="Refund the buyer in full or in part",
)
async def refund(
    transaction_id: uuid.UUID,
    request: RefundRequest | None = None,
    service: EscrowService = Depends(get_escrow_service),
) -> SettlementResponse:
    request = request or RefundRequest()
    result = await service.refund(transaction_id, amount=request.amount, reason=request.reason)
    return _settlement(result)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


@router.patch(
    "/{transaction_id}/conditions/{condition_type}",
    response_model=TransactionEnvelope,
    summary="Update the config of a settlement condition",
)
async def update_condition(
    transaction_id: uuid.UUID,
    condition_type: str,
    request: ConditionUpdateRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    result = await service.update_condition(transaction_id, condition_type, request.config)
    return _envelope(result)


@router.post(
    "/{transaction_id}/milestones/{milestone_id}/complete",
    response_model=TransactionEnvelope,
    summary="Seller completes a milestone",
)
async def complete_milestone(
    transaction_id: uuid.UUID,
    milestone_id: str,
    request: MilestoneCompleteRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    result = await service.complete_milestone(transaction_id, request.seller_id, milestone_id)
    return _envelope(result)


@router.post(
    "/{transaction_id}/sign",
    response_model=TransactionEnvelope,
    summary="Buyer or seller signs the release",
)
async def sign_release(
    transaction_id: uuid.UUID,
    request: SignReleaseRequest,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionEnvelope:
    return _envelope(await service.sign_release(transaction_id, request.actor_id))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get(
    "/users/{user_id}/transactions",
    response_model=UserTransactionsResponse,
    summary="List a user's transactions, newest first",
)
async def list_user_transactions(
    user_id: str,
    role: PartyRole | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: EscrowService = Depends(get_escrow_service),
) -> UserTransactionsResponse:
    transactions = await service.list_user_transactions(user_id, role=role, limit=limit, offset=offset)
    return UserTransactionsResponse(
        user_id=user_id,
        role=role,
        transactions=[_transaction(txn) for txn in transactions],
    )


@router.get(
    "/{transaction_id}",
    response_model=EscrowResponse,
    summary="Get escrow transaction details",
)
async def get_escrow(
    transaction_id: uuid.UUID,
    service: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    return _transaction(await service.get_transaction(transaction_id))


@router.get(
    "/{transaction_id}/status",
    response_model=TransactionStatusResponse,
    summary="Status, allowed events and unmet conditions",
)
async def get_status(
    transaction_id: uuid.UUID,
    service: EscrowService = Depends(get_escrow_service),
) -> TransactionStatusResponse:
    return TransactionStatusResponse.model_validate(await service.get_status(transaction_id))


@router.get(
    "/{transaction_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get the audit trail of a transaction",
)
async def get_events(
    transaction_id: uuid.UUID,
    service: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    return [_event(event) for event in await service.get_events(transaction_id)]
