"""Application services — use case orchestration."""

from escrow_settlement.services.container import ServiceContainer, build_services
from escrow_settlement.services.escrow_service import EscrowService
from escrow_settlement.services.payment_service import PaymentService
from escrow_settlement.services.release_service import ReleaseService
from escrow_settlement.services.settlement_service import SettlementService

__all__ = [
    "EscrowService",
    "PaymentService",
    "ReleaseService",
    "ServiceContainer",
    "SettlementService",
    "build_services",
]
