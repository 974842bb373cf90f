"""FastAPI dependency injection providers.

The lifespan hook builds one ServiceContainer and keeps it on ``app.state``;
route handlers receive it, or a single service from it, through Depends().
"""

from __future__ import annotations

from fastapi import Depends, Request

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.services.container import ServiceContainer
from escrow_settlement.services.escrow_service import EscrowService


def get_services(request: Request) -> ServiceContainer:
    """Provide the application's ServiceContainer."""
    return request.app.state.services


def get_escrow_service(services: ServiceContainer = Depends(get_services)) -> EscrowService:
    """Provide the EscrowService bound to the configured store and rail."""
    return services.escrow


def get_app_settings(services: ServiceContainer = Depends(get_services)) -> Settings:
    """Provide the settings the services were built with."""
    return services.settings or get_settings()
