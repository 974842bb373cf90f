"""Wires the services together around one store and one payment rail.

The API keeps a single ServiceContainer on ``app.state``; the scheduler,
the simulation and the tests build their own with in-memory parts.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.domain.conditions import ConditionEvaluatorRegistry
from escrow_settlement.domain.models import PlatformConfig, utcnow
from escrow_settlement.domain.payment_protocol import PaymentRail
from escrow_settlement.domain.store_protocol import EscrowStore, IdempotencyStore
from escrow_settlement.services.escrow_service import EscrowService
from escrow_settlement.services.notification_service import LoggingNotifier, Notifier
from escrow_settlement.services.release_service import ReleaseService
from escrow_settlement.services.settlement_service import SettlementService
from escrow_settlement.services.tracking_service import CarrierTracker, NullCarrierTracker


@dataclass
class ServiceContainer:
    store: EscrowStore
    payments: PaymentRail
    escrow: EscrowService
    settlement: SettlementService
    releases: ReleaseService
    tracker: CarrierTracker
    notifier: Notifier
    settings: Settings
    clock: Callable[[], datetime]


def build_services(
    store: EscrowStore,
    payments: PaymentRail,
    *,
    settings: Settings | None = None,
    clock: Callable[[], datetime] = utcnow,
    tracker: CarrierTracker | None = None,
    notifier: Notifier | None = None,
    idempotency: IdempotencyStore | None = None,
    registry: ConditionEvaluatorRegistry | None = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    notifier = notifier or LoggingNotifier()

    releases = ReleaseService(
        store,
        payments,
        clock=clock,
        notifier=notifier,
        claim_ttl_seconds=settings.settlement_claim_ttl_seconds,
    )
    settlement = SettlementService(store, releases, clock=clock, registry=registry)
    escrow = EscrowService(
        store,
        payments,
        settlement,
        releases,
        clock=clock,
        notifier=notifier,
        idempotency=idempotency,
        default_config=PlatformConfig.from_settings(settings),
    )
    return ServiceContainer(
        store=store,
        payments=payments,
        escrow=escrow,
        settlement=settlement,
        releases=releases,
        tracker=tracker or NullCarrierTracker(),
        notifier=notifier,
        settings=settings,
        clock=clock,
    )
