"""Scheduled escrow jobs — auto-release sweep, carrier polling, reminders.

Triggered either by the cron endpoint (``/api/v1/cron/escrow-auto-release``)
or by the in-process loop when ``SCHEDULER_ENABLED`` is set:

    run_all_escrow_jobs
        1. run_auto_release_sweep    evaluate every funded, undisputed transaction
        2. update_tracking_statuses  ask the carrier about open shipments
        3. send_escrow_reminders     nudge sellers to ship, buyers to confirm

One failing transaction is logged and counted; it never stops the batch.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from escrow_settlement.domain.enums import ACTIVE_STATUSES, CarrierStatus, EscrowStatus
from escrow_settlement.domain.models import format_instant
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.notification_service import send_quietly

if TYPE_CHECKING:
    from collections.abc import Sequence

    from escrow_settlement.domain.models import EscrowTransaction
    from escrow_settlement.services.container import ServiceContainer

logger = get_logger(__name__)


async def _snapshot(
    services: ServiceContainer,
    statuses: Sequence[EscrowStatus],
    page_size: int | None = None,
) -> list[EscrowTransaction]:
    """Collect every transaction in ``statuses`` before any of them is touched.

    Paging a snapshot keeps the offsets stable while transactions leave the
    queried statuses during the run.
    """
    page_size = page_size or services.settings.sweep_page_size
    collected: list[EscrowTransaction] = []
    offset = 0
    while True:
        page = await services.store.list_by_status(statuses, limit=page_size, offset=offset)
        collected.extend(page)
        if len(page) < page_size:
            return collected
        offset += page_size


async def run_auto_release_sweep(
    services: ServiceContainer,
    page_size: int | None = None,
) -> dict[str, Any]:
    """Evaluate every active transaction, releasing those whose conditions are met.

    Returns:
        {"processed", "released", "errors", "details": [...]} with one detail
        entry per processed transaction; its ``action`` is ``released``,
        ``conditions_met``, ``evaluated`` (with the ``unmet`` descriptions) or
        ``error``.
    """
    transactions = await _snapshot(services, ACTIVE_STATUSES, page_size)
    ids: list[uuid.UUID] = list(dict.fromkeys(txn.id for txn in transactions))
    logger.info("sweep.started", candidates=len(ids))

    processed = released = errors = 0
    details: list[dict[str, Any]] = []

    for transaction_id in ids:
        processed += 1
        entry: dict[str, Any] = {"transaction_id": str(transaction_id)}
        details.append(entry)
        try:
            result = await services.settlement.evaluate_all(transaction_id, auto=True)
        except Exception as exc:
            errors += 1
            logger.exception("sweep.transaction_failed", transaction_id=str(transaction_id))
            entry.update(action="error", error=str(exc))
            continue

        if result.released:
            released += 1
            entry.update(action="released", status=result.status.value)
        elif result.release_error:
            errors += 1
            entry.update(action="error", error=result.release_error)
        elif result.all_met:
            # Claimed by another worker or frozen by a dispute since the snapshot.
            entry.update(action="conditions_met", status="awaiting_release")
        else:
            entry.update(action="evaluated", unmet=result.unmet)

    summary = {"processed": processed, "released": released, "errors": errors, "details": details}
    logger.info("sweep.finished", processed=processed, released=released, errors=errors)
    return summary


async def update_tracking_statuses(services: ServiceContainer) -> dict[str, int]:
    """Poll the carrier for shipments that have not reported delivery yet."""
    shipments = await _snapshot(services, (EscrowStatus.SHIPPED, EscrowStatus.IN_TRANSIT))
    checked = updated = errors = 0

    for txn in shipments:
        if txn.shipping is None or not txn.shipping.tracking_number:
            continue
        checked += 1
        try:
            update = await services.tracker.get_status(txn.shipping.carrier, txn.shipping.tracking_number)
            if update is None:
                continue
            if update.status == CarrierStatus.IN_TRANSIT and txn.status != EscrowStatus.SHIPPED:
                continue
            await services.escrow.record_carrier_update(
                txn.id,
                update.status,
                occurred_at=update.occurred_at,
                tracking_number=txn.shipping.tracking_number,
            )
            updated += 1
        except Exception:
            errors += 1
            logger.exception("tracking.update_failed", transaction_id=str(txn.id))

    logger.info("tracking.finished", checked=checked, updated=updated, errors=errors)
    return {"checked": checked, "updated": updated, "errors": errors}


async def send_escrow_reminders(services: ServiceContainer) -> dict[str, int]:
    """Remind sellers of paid but unshipped orders and buyers of unconfirmed deliveries."""
    settings = services.settings
    now = services.clock()
    sellers_reminded = buyers_reminded = 0

    ship_cutoff = now - timedelta(days=settings.unshipped_reminder_days)
    for txn in await _snapshot(services, (EscrowStatus.PAYMENT_RECEIVED,)):
        paid_at = txn.status_entered_at(EscrowStatus.PAYMENT_RECEIVED)
        if paid_at is not None and paid_at < ship_cutoff:
            if await send_quietly(
                services.notifier,
                txn.seller_id,
                "ship_reminder",
                transaction_id=str(txn.id),
                paid_at=format_instant(paid_at),
            ):
                sellers_reminded += 1

    confirm_cutoff = now - timedelta(days=settings.confirmation_reminder_days)
    for txn in await _snapshot(services, (EscrowStatus.DELIVERED,)):
        delivered_at = txn.shipping.actual_delivery if txn.shipping else None
        if delivered_at is not None and delivered_at < confirm_cutoff:
            if await send_quietly(
                services.notifier,
                txn.buyer_id,
                "confirm_receipt_reminder",
                transaction_id=str(txn.id),
                dispute_period_ends_at=format_instant(txn.dispute_period_ends_at),
            ):
                buyers_reminded += 1

    logger.info("reminders.finished", sellers=sellers_reminded, buyers=buyers_reminded)
    return {"sellers_reminded": sellers_reminded, "buyers_reminded": buyers_reminded}


async def run_all_escrow_jobs(services: ServiceContainer) -> dict[str, Any]:
    """Run the auto-release sweep, tracking updates and reminders, in that order."""
    auto_release = await run_auto_release_sweep(services)
    tracking = await update_tracking_statuses(services)
    reminders = await send_escrow_reminders(services)
    return {
        "auto_release": auto_release,
        "tracking": tracking,
        "reminders": reminders,
        "timestamp": format_instant(services.clock()),
    }


async def run_scheduler_loop(services: ServiceContainer, interval_seconds: float | None = None) -> None:
    """Run all escrow jobs every ``interval_seconds`` until cancelled."""
    interval = interval_seconds or services.settings.scheduler_interval_seconds
    logger.info("scheduler.started", interval_seconds=interval)
    try:
        while True:
            try:
                await run_all_escrow_jobs(services)
            except Exception:
                logger.exception("scheduler.run_failed")
            await asyncio.sleep(interval)
    finally:
        logger.info("scheduler.stopped")
