#!/usr/bin/env python3
"""Escrow Settlement — End-to-End Simulation.

Runs four marketplace scenarios against the service layer with the
simulated payment rail and a clock the script moves forward:

    Scenario 1: Happy Path (physical goods)
        - Buyer pays $120.00, seller ships, carrier reports delivery
        - Buyer confirms receipt -> RELEASED, transfer + payout created

    Scenario 2: Auto-Release (digital goods)
        - Buyer pays, never confirms
        - 49 hours later the scheduler sweep -> AUTO_RELEASED

    Scenario 3: Dispute With Partial Refund
        - Item delivered, buyer disputes within the dispute period
        - Platform refunds $40.00 of $120.00 -> REFUNDED

    Scenario 4: Payout Failure and Retry
        - Transfer succeeds but the bank payout fails -> last_error recorded
        - Next sweep retries the payout only -> AUTO_RELEASED, one transfer

Usage:
    # In-memory store (default, instant):
    python simulation.py

    # SQLite through the SQLAlchemy store:
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --scenario 4
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_settlement.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_settlement.domain.enums import CarrierStatus, DisputeOutcome, ItemType  # noqa: E402
from escrow_settlement.domain.exceptions import PaymentRailError  # noqa: E402
from escrow_settlement.domain.models import utcnow  # noqa: E402
from escrow_settlement.orchestration.auto_release import run_all_escrow_jobs  # noqa: E402
from escrow_settlement.services.container import ServiceContainer, build_services  # noqa: E402
from escrow_settlement.services.payment_service import PaymentService  # noqa: E402

BUYER = "buyer_alice"
SELLER = "seller_bob"
SELLER_ACCOUNT = "acct_sim_seller_bob"

_sqlite_engine = None
_tmpdir: tempfile.TemporaryDirectory | None = None


class SimulationClock:
    """A clock the scenarios move forward by hand."""

    def __init__(self) -> None:
        self.now = utcnow()

    def __call__(self):  # noqa: ANN204
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class FlakyPayouts(PaymentService):
    """Simulated rail whose first ``failures`` payouts are rejected by the bank."""

    def __init__(self, failures: int) -> None:
        super().__init__(simulate=True)
        self.failures = failures
        self.transfers: list[str] = []

    async def transfer_to_seller(self, *args: Any, **kwargs: Any) -> str:
        transfer_id = await super().transfer_to_seller(*args, **kwargs)
        self.transfers.append(transfer_id)
        return transfer_id

    async def payout_to_bank(self, *args: Any, **kwargs: Any) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise PaymentRailError("Bank account closed", operation="payout")
        return await super().payout_to_bank(*args, **kwargs)


# ---------------------------------------------------------------------------
# Store lifecycle helpers
# ---------------------------------------------------------------------------
async def open_store(use_sqlite: bool = False):
    """Create the escrow store for one scenario."""
    global _sqlite_engine, _tmpdir

    if not use_sqlite:
        from escrow_settlement.infrastructure.memory_store import InMemoryEscrowStore

        return InMemoryEscrowStore()

    from escrow_settlement.infrastructure.database import (
        SqlEscrowStore,
        create_engine_for_url,
        create_session_factory,
        create_tables,
    )

    _tmpdir = tempfile.TemporaryDirectory()
    url = f"sqlite+aiosqlite:///{Path(_tmpdir.name) / 'simulation.db'}"
    _sqlite_engine = create_engine_for_url(url)
    await create_tables(_sqlite_engine)
    logger.info("database.sqlite_initialized", url=url)
    return SqlEscrowStore(create_session_factory(_sqlite_engine))


async def close_store() -> None:
    global _sqlite_engine, _tmpdir
    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


def money(minor: int | None) -> str:
    return f"${(minor or 0) / 100:,.2f}"


async def print_audit_trail(services: ServiceContainer, transaction_id) -> None:  # noqa: ANN001
    events = await services.escrow.get_events(transaction_id)
    print("\n  Audit Trail:")
    for i, event in enumerate(events, 1):
        print(f"    {i}. [{event.event_type.value}] {event.description} (by {event.triggered_by.value})")
    print()


async def new_services(use_sqlite: bool, payments: PaymentService | None = None):
    clock = SimulationClock()
    store = await open_store(use_sqlite)
    services = build_services(store, payments or PaymentService(simulate=True), clock=clock)
    return services, clock


async def create_paid(services: ServiceContainer, amount: int, item_type: ItemType, description: str):
    txn = await services.escrow.create_transaction(
        buyer_id=BUYER,
        seller_id=SELLER,
        seller_destination_id=SELLER_ACCOUNT,
        amount=amount,
        item_description=description,
        item_type=item_type,
    )
    print(f"  Created {txn.id}: {money(txn.amount)}, fee {money(txn.platform_fee)}, seller gets {money(txn.seller_amount)}")
    await services.escrow.capture_payment(txn.id, actor_id=BUYER)
    print("  Payment captured and held in escrow")
    return txn


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path(use_sqlite: bool = False) -> None:
    banner("SCENARIO 1: Happy Path (physical goods)")
    services, clock = await new_services(use_sqlite)
    try:
        txn = await create_paid(services, 12000, ItemType.PHYSICAL_GOODS, "Vintage film camera")

        section("Seller ships")
        await services.escrow.mark_shipped(txn.id, SELLER, carrier="ups", tracking_number="1Z999AA10123456784")

        section("Carrier reports delivery")
        clock.advance(days=2)
        result = await services.escrow.record_carrier_update(txn.id, CarrierStatus.DELIVERED)
        print(f"  Status: {result.transaction.status.value}, unmet: {result.evaluation.unmet}")

        section("Buyer confirms receipt")
        result = await services.escrow.confirm_receipt(txn.id, BUYER)
        final = result.transaction
        print(f"  Status: {final.status.value}")
        print(f"  Transfer: {final.transfer_id}  Payout: {final.payout_id}")
        await print_audit_trail(services, txn.id)
    finally:
        await close_store()


async def scenario_2_auto_release(use_sqlite: bool = False) -> None:
    banner("SCENARIO 2: Auto-Release (digital goods)")
    services, clock = await new_services(use_sqlite)
    try:
        txn = await create_paid(services, 2500, ItemType.DIGITAL_GOODS, "Stock photo bundle")

        section("Scheduler runs one hour later")
        clock.advance(hours=1)
        summary = await run_all_escrow_jobs(services)
        print(f"  Released: {summary['auto_release']['released']}")

        section("Scheduler runs after the 48 hour window")
        clock.advance(hours=48)
        summary = await run_all_escrow_jobs(services)
        print(f"  Released: {summary['auto_release']['released']}")
        final = await services.escrow.get_transaction(txn.id)
        print(f"  Status: {final.status.value}")
        await print_audit_trail(services, txn.id)
    finally:
        await close_store()


async def scenario_3_dispute_partial_refund(use_sqlite: bool = False) -> None:
    banner("SCENARIO 3: Dispute With Partial Refund")
    services, clock = await new_services(use_sqlite)
    try:
        txn = await create_paid(services, 12000, ItemType.PHYSICAL_GOODS, "Mechanical keyboard")
        await services.escrow.mark_shipped(txn.id, SELLER, carrier="fedex", tracking_number="7489 2210 0001")
        clock.advance(days=3)
        await services.escrow.record_carrier_update(txn.id, CarrierStatus.DELIVERED)

        section("Buyer disputes")
        clock.advance(days=1)
        disputed = await services.escrow.open_dispute(txn.id, BUYER, "Two keycaps missing")
        print(f"  Status: {disputed.status.value}, reason: {disputed.dispute_reason}")

        section("Platform refunds part of the payment")
        result = await services.escrow.resolve_dispute(
            txn.id, DisputeOutcome.REFUND, note="Partial refund for missing keycaps", refund_amount=4000
        )
        print(f"  Status: {result.status.value}, refunded {money(result.amount)} ({result.refund_id})")
        await print_audit_trail(services, txn.id)
    finally:
        await close_store()


async def scenario_4_payout_failure(use_sqlite: bool = False) -> None:
    banner("SCENARIO 4: Payout Failure and Retry")
    payments = FlakyPayouts(failures=1)
    services, clock = await new_services(use_sqlite, payments)
    try:
        txn = await create_paid(services, 2500, ItemType.DIGITAL_GOODS, "Plugin license")

        section("First sweep: transfer succeeds, payout fails")
        clock.advance(hours=49)
        summary = await run_all_escrow_jobs(services)
        stuck = await services.escrow.get_transaction(txn.id)
        print(f"  Errors: {summary['auto_release']['errors']}, status: {stuck.status.value}")
        print(f"  Transfer kept: {stuck.transfer_id}, last error: {stuck.last_error}")

        section("Second sweep: payout retried")
        clock.advance(hours=1)
        await run_all_escrow_jobs(services)
        final = await services.escrow.get_transaction(txn.id)
        print(f"  Status: {final.status.value}, payout: {final.payout_id}")
        print(f"  Transfers issued: {len(payments.transfers)}")
        await print_audit_trail(services, txn.id)
    finally:
        await close_store()


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_auto_release,
    3: scenario_3_dispute_partial_refund,
    4: scenario_4_payout_failure,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    print("\n" + "#" * 70)
    print("  ESCROW SETTLEMENT — SIMULATION")
    print(f"  Store: {'SQLite' if use_sqlite else 'in-memory'}   Payment rail: simulated")
    print("#" * 70 + "\n")

    for scenario in SCENARIOS.values():
        await scenario(use_sqlite)

    print("\n" + "=" * 70)
    print("  ALL SCENARIOS COMPLETED SUCCESSFULLY")
    print("=" * 70 + "\n")


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    if num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
        return
    await SCENARIOS[num](use_sqlite)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Settlement Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use the SQLAlchemy store on a temporary SQLite file instead of memory.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
