"""Shared test fixtures for the escrow settlement test suite.

Provides:
    - A frozen, hand-advanced clock
    - The in-memory store and a recording simulated payment rail
    - A fully wired ServiceContainer plus helpers that walk a transaction
      through its lifecycle
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from escrow_settlement.config import Settings
from escrow_settlement.domain.enums import CarrierStatus, ItemType
from escrow_settlement.domain.exceptions import PaymentRailError
from escrow_settlement.domain.models import EscrowTransaction
from escrow_settlement.infrastructure.memory_store import InMemoryEscrowStore
from escrow_settlement.infrastructure.redis_client import PENDING
from escrow_settlement.services.container import ServiceContainer, build_services
from escrow_settlement.services.payment_service import PaymentService

BUYER = "buyer_alice"
SELLER = "seller_bob"
SELLER_ACCOUNT = "acct_seller_bob"

START = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------
class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingRail(PaymentService):
    """Simulated rail that records every call and can be told to fail.

    ``fail[operation]`` is the number of upcoming calls of that operation
    that raise PaymentRailError.
    """

    def __init__(self) -> None:
        super().__init__(simulate=True)
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail: dict[str, int] = {}

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [params for name, params in self.calls if name == operation]

    def _maybe_fail(self, operation: str, params: dict[str, Any]) -> None:
        self.calls.append((operation, params))
        if self.fail.get(operation, 0) > 0:
            self.fail[operation] -= 1
            raise PaymentRailError(f"{operation} declined", operation=operation)

    async def create_payment_hold(self, **params: Any) -> str:
        self._maybe_fail("create_payment_hold", params)
        return await super().create_payment_hold(**params)

    async def capture_payment(self, payment_intent_id: str, idempotency_key: str) -> str:
        self._maybe_fail("capture_payment", {"payment_intent_id": payment_intent_id, "idempotency_key": idempotency_key})
        return await super().capture_payment(payment_intent_id, idempotency_key)

    async def cancel_payment_hold(self, payment_intent_id: str, idempotency_key: str) -> str:
        self._maybe_fail("cancel_payment_hold", {"payment_intent_id": payment_intent_id, "idempotency_key": idempotency_key})
        return await super().cancel_payment_hold(payment_intent_id, idempotency_key)

    async def transfer_to_seller(self, **params: Any) -> str:
        self._maybe_fail("transfer_to_seller", params)
        return await super().transfer_to_seller(**params)

    async def payout_to_bank(self, **params: Any) -> str:
        self._maybe_fail("payout_to_bank", params)
        return await super().payout_to_bank(**params)

    async def refund_payment(self, **params: Any) -> str:
        self._maybe_fail("refund_payment", params)
        return await super().refund_payment(**params)


class RecordingNotifier:
    def __init__(self, broken: bool = False) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.broken = broken

    async def notify(self, recipient_id: str, template: str, data: dict[str, Any]) -> None:
        if self.broken:
            raise ConnectionError("smtp down")
        self.sent.append((recipient_id, template, data))

    def templates(self) -> list[str]:
        return [template for _, template, _ in self.sent]


class FakeIdempotencyStore:
    """Dict-backed stand-in for RedisIdempotencyStore."""

    def __init__(self) -> None:
        self.keys: dict[str, str] = {}

    async def reserve(self, key: str) -> str | None:
        if key in self.keys:
            return self.keys[key]
        self.keys[key] = PENDING
        return None

    async def complete(self, key: str, value: str) -> None:
        self.keys[key] = value

    async def release(self, key: str) -> None:
        self.keys.pop(key, None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        store_backend="memory",
        payment_rail_mode="simulated",
        cron_secret="",
        scheduler_enabled=False,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryEscrowStore:
    return InMemoryEscrowStore()


@pytest.fixture
def rail() -> RecordingRail:
    return RecordingRail()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def idempotency() -> FakeIdempotencyStore:
    return FakeIdempotencyStore()


@pytest.fixture
def services(
    store: InMemoryEscrowStore,
    rail: RecordingRail,
    settings: Settings,
    clock: FrozenClock,
    notifier: RecordingNotifier,
    idempotency: FakeIdempotencyStore,
) -> ServiceContainer:
    return build_services(
        store,
        rail,
        settings=settings,
        clock=clock,
        notifier=notifier,
        idempotency=idempotency,
    )


@pytest.fixture
def sample_transaction_id() -> uuid.UUID:
    """Return a deterministic UUID for testing."""
    return uuid.UUID("12345678-1234-5678-1234-567812345678")


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------
async def create_transaction(services: ServiceContainer, **overrides: Any) -> EscrowTransaction:
    params: dict[str, Any] = {
        "buyer_id": BUYER,
        "seller_id": SELLER,
        "seller_destination_id": SELLER_ACCOUNT,
        "amount": 10000,
        "item_description": "Vintage film camera",
        "item_type": ItemType.PHYSICAL_GOODS,
    }
    params.update(overrides)
    return await services.escrow.create_transaction(**params)


async def paid_transaction(services: ServiceContainer, **overrides: Any) -> EscrowTransaction:
    txn = await create_transaction(services, **overrides)
    result = await services.escrow.capture_payment(txn.id, actor_id=BUYER)
    return result.transaction


async def delivered_transaction(services: ServiceContainer, **overrides: Any) -> EscrowTransaction:
    txn = await paid_transaction(services, **overrides)
    await services.escrow.mark_shipped(txn.id, SELLER, carrier="ups", tracking_number="1Z999AA1")
    result = await services.escrow.record_carrier_update(txn.id, CarrierStatus.DELIVERED)
    return result.transaction
