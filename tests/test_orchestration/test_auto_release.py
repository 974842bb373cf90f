"""Tests for the scheduled escrow jobs: sweep, tracking polling and reminders."""

from __future__ import annotations

import asyncio

import pytest

from escrow_settlement.domain.enums import CarrierStatus, EscrowStatus, EventType, ItemType
from escrow_settlement.orchestration.auto_release import (
    run_all_escrow_jobs,
    run_auto_release_sweep,
    run_scheduler_loop,
    send_escrow_reminders,
    update_tracking_statuses,
)
from escrow_settlement.services.container import build_services
from escrow_settlement.services.tracking_service import TrackingUpdate

from conftest import SELLER, RecordingNotifier, delivered_transaction, paid_transaction


class FakeTracker:
    def __init__(self, updates: dict[str, TrackingUpdate | None]) -> None:
        self.updates = updates
        self.queries: list[tuple[str, str]] = []

    async def get_status(self, carrier: str, tracking_number: str) -> TrackingUpdate | None:
        self.queries.append((carrier, tracking_number))
        update = self.updates.get(tracking_number)
        if isinstance(update, Exception):
            raise update
        return update


class TestAutoReleaseSweep:
    @pytest.mark.asyncio
    async def test_releases_only_due_transactions(self, services, clock, store) -> None:
        digital = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        physical = await paid_transaction(services)
        clock.advance(hours=49)

        summary = await run_auto_release_sweep(services)

        assert summary["processed"] == 2
        assert summary["released"] == 1
        assert summary["errors"] == 0
        assert (await store.get(digital.id)).status == EscrowStatus.AUTO_RELEASED
        assert (await store.get(physical.id)).status == EscrowStatus.PAYMENT_RECEIVED
        event_types = [e.event_type for e in await store.list_events(digital.id)]
        assert EventType.AUTO_RELEASED in event_types

        details = {d["transaction_id"]: d for d in summary["details"]}
        assert details[str(digital.id)]["action"] == "released"
        waiting = details[str(physical.id)]
        assert waiting["action"] == "evaluated"
        assert "Buyer must confirm receipt" in waiting["unmet"]

    @pytest.mark.asyncio
    async def test_claimed_transaction_is_reported_awaiting_release(self, services, clock, store, rail) -> None:
        txn = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        clock.advance(hours=49)
        held = await store.get(txn.id)
        held.settlement_claim = "other-worker"
        held.settlement_claimed_at = clock.now
        await store.save(held)

        summary = await run_auto_release_sweep(services)

        assert summary["released"] == 0
        assert summary["errors"] == 0
        assert summary["details"] == [
            {"transaction_id": str(txn.id), "action": "conditions_met", "status": "awaiting_release"}
        ]
        assert rail.calls_to("transfer_to_seller") == []

    @pytest.mark.asyncio
    async def test_disputed_transactions_are_skipped(self, services, clock, store) -> None:
        txn = await delivered_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        await services.escrow.open_dispute(txn.id, "buyer_alice", "Files are corrupt")
        clock.advance(days=30)

        summary = await run_auto_release_sweep(services)

        assert summary["processed"] == 0
        assert (await store.get(txn.id)).status == EscrowStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_payout_failure_is_counted_then_retried(self, services, clock, rail, store) -> None:
        txn = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        clock.advance(hours=49)
        rail.fail["payout_to_bank"] = 1

        first = await run_auto_release_sweep(services)
        assert first["errors"] == 1
        assert first["released"] == 0
        assert "Payout" in first["details"][0]["error"]
        stuck = await store.get(txn.id)
        assert stuck.transfer_id is not None
        assert stuck.settlement_claim is None

        second = await run_auto_release_sweep(services)
        assert second["released"] == 1
        assert len(rail.calls_to("transfer_to_seller")) == 1
        assert (await store.get(txn.id)).status == EscrowStatus.AUTO_RELEASED

    @pytest.mark.asyncio
    async def test_one_broken_transaction_does_not_stop_the_batch(self, services, clock, monkeypatch) -> None:
        broken = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        healthy = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=3000)
        clock.advance(hours=49)

        evaluate_all = services.settlement.evaluate_all

        async def flaky(transaction_id, *, auto=False):  # noqa: ANN001, ANN202
            if transaction_id == broken.id:
                raise RuntimeError("row is corrupt")
            return await evaluate_all(transaction_id, auto=auto)

        monkeypatch.setattr(services.settlement, "evaluate_all", flaky)

        summary = await run_auto_release_sweep(services)

        assert summary["processed"] == 2
        assert summary["released"] == 1
        assert summary["errors"] == 1
        assert {"transaction_id": str(broken.id), "action": "error", "error": "row is corrupt"} in summary["details"]
        assert {"transaction_id": str(healthy.id), "action": "released", "status": "auto_released"} in summary["details"]

    @pytest.mark.asyncio
    async def test_pages_through_every_candidate(self, services, clock, store) -> None:
        created = [
            await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=1000 + i)
            for i in range(5)
        ]
        clock.advance(hours=49)

        summary = await run_auto_release_sweep(services, page_size=2)

        assert summary["processed"] == 5
        assert summary["released"] == 5
        for txn in created:
            assert (await store.get(txn.id)).status == EscrowStatus.AUTO_RELEASED


class TestTrackingUpdates:
    @pytest.mark.asyncio
    async def test_delivery_reported_by_carrier(self, store, rail, settings, clock, notifier) -> None:
        tracker = FakeTracker({"1Z999AA1": TrackingUpdate(CarrierStatus.DELIVERED, occurred_at=clock())})
        services = build_services(store, rail, settings=settings, clock=clock, tracker=tracker, notifier=notifier)
        txn = await paid_transaction(services)
        await services.escrow.mark_shipped(txn.id, SELLER, carrier="ups", tracking_number="1Z999AA1")

        result = await update_tracking_statuses(services)

        assert result == {"checked": 1, "updated": 1, "errors": 0}
        assert tracker.queries == [("ups", "1Z999AA1")]
        stored = await store.get(txn.id)
        assert stored.status == EscrowStatus.DELIVERED
        assert stored.dispute_period_ends_at is not None

    @pytest.mark.asyncio
    async def test_nothing_new_and_tracker_errors(self, store, rail, settings, clock) -> None:
        tracker = FakeTracker({"QUIET": None, "BROKEN": ConnectionError("carrier api down")})
        services = build_services(store, rail, settings=settings, clock=clock, tracker=tracker)
        quiet = await paid_transaction(services)
        await services.escrow.mark_shipped(quiet.id, SELLER, carrier="dhl", tracking_number="QUIET")
        broken = await paid_transaction(services)
        await services.escrow.mark_shipped(broken.id, SELLER, carrier="dhl", tracking_number="BROKEN")

        result = await update_tracking_statuses(services)

        assert result == {"checked": 2, "updated": 0, "errors": 1}
        assert (await store.get(quiet.id)).status == EscrowStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_default_tracker_reports_nothing(self, services) -> None:
        txn = await paid_transaction(services)
        await services.escrow.mark_shipped(txn.id, SELLER, carrier="ups", tracking_number="1Z1")

        result = await update_tracking_statuses(services)

        assert result == {"checked": 1, "updated": 0, "errors": 0}


class TestReminders:
    @pytest.mark.asyncio
    async def test_unshipped_and_unconfirmed_orders(self, services, clock, notifier) -> None:
        unshipped = await paid_transaction(services)
        delivered = await delivered_transaction(services)
        notifier.sent.clear()

        clock.advance(days=1)
        early = await send_escrow_reminders(services)
        assert early == {"sellers_reminded": 0, "buyers_reminded": 0}

        clock.advance(days=3)
        result = await send_escrow_reminders(services)

        assert result == {"sellers_reminded": 1, "buyers_reminded": 1}
        assert notifier.sent[0][:2] == ("seller_bob", "ship_reminder")
        assert notifier.sent[0][2]["transaction_id"] == str(unshipped.id)
        assert notifier.sent[1][:2] == ("buyer_alice", "confirm_receipt_reminder")
        assert notifier.sent[1][2]["transaction_id"] == str(delivered.id)

    @pytest.mark.asyncio
    async def test_failed_notification_is_not_counted(self, store, rail, settings, clock) -> None:
        services = build_services(store, rail, settings=settings, clock=clock, notifier=RecordingNotifier(broken=True))
        await paid_transaction(services)
        clock.advance(days=4)

        result = await send_escrow_reminders(services)

        assert result["sellers_reminded"] == 0


class TestRunAll:
    @pytest.mark.asyncio
    async def test_summary_shape(self, services) -> None:
        summary = await run_all_escrow_jobs(services)
        assert set(summary) == {"auto_release", "tracking", "reminders", "timestamp"}
        assert summary["timestamp"].startswith("2026-03-02T12:00:00")

    @pytest.mark.asyncio
    async def test_scheduler_loop_runs_until_cancelled(self, services, clock, store) -> None:
        txn = await paid_transaction(services, item_type=ItemType.DIGITAL_GOODS, amount=2500)
        clock.advance(hours=49)

        task = asyncio.create_task(run_scheduler_loop(services, interval_seconds=3600))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if (await store.get(txn.id)).status == EscrowStatus.AUTO_RELEASED:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await store.get(txn.id)).status == EscrowStatus.AUTO_RELEASED
