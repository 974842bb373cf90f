"""Platform configuration routes.

    GET    /api/v1/platform/config      — Fee schedule, default periods and bounds
    PATCH  /api/v1/platform/config      — Change them for future transactions
    GET    /api/v1/platform/conditions  — Condition types the evaluator understands
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from escrow_settlement.api.deps import get_escrow_service, get_services
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.escrow import (
    PlatformConfigResponse,
    PlatformConfigUpdate,
    SupportedConditionsResponse,
)
from escrow_settlement.services.container import ServiceContainer
from escrow_settlement.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/v1/platform", tags=["Platform"])
logger = get_logger(__name__)


@router.get(
    "/config",
    response_model=PlatformConfigResponse,
    summary="Get the platform configuration",
)
async def get_platform_config(
    service: EscrowService = Depends(get_escrow_service),
) -> PlatformConfigResponse:
    config = await service.get_platform_config()
    return PlatformConfigResponse.model_validate(config.to_dict())


@router.patch(
    "/config",
    response_model=PlatformConfigResponse,
    summary="Update the platform configuration",
)
async def update_platform_config(
    request: PlatformConfigUpdate,
    service: EscrowService = Depends(get_escrow_service),
) -> PlatformConfigResponse:
    config = await service.update_platform_config(**request.model_dump(exclude_none=True))
    return PlatformConfigResponse.model_validate(config.to_dict())


@router.get(
    "/conditions",
    response_model=SupportedConditionsResponse,
    summary="List supported settlement condition types",
)
async def supported_conditions(
    services: ServiceContainer = Depends(get_services),
) -> SupportedConditionsResponse:
    registry = services.settlement.registry
    return SupportedConditionsResponse(
        builtin=registry.get_supported_types(),
        custom=registry.get_custom_evaluators(),
    )
