"""Carrier tracking capability.

Used by the scheduler to poll shipments that have not reported delivery.
The default tracker has no carrier integration and reports nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from escrow_settlement.domain.enums import CarrierStatus
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrackingUpdate:
    status: CarrierStatus
    occurred_at: datetime | None = None


@runtime_checkable
class CarrierTracker(Protocol):
    async def get_status(self, carrier: str, tracking_number: str) -> TrackingUpdate | None:
        """Latest known carrier status, or None when the carrier has nothing new."""
        ...


class NullCarrierTracker:
    """Tracker without a carrier integration; never reports progress."""

    async def get_status(self, carrier: str, tracking_number: str) -> TrackingUpdate | None:
        logger.debug("tracking.no_integration", carrier=carrier, tracking_number=tracking_number)
        return None
