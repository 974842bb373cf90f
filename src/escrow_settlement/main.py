"""FastAPI application entry point for the escrow settlement service.

Lifecycle:
    1. Startup: Initialize logging, the escrow store, the payment rail and
       Redis, then build the ServiceContainer and (optionally) start the
       in-process scheduler.
    2. Running: Serve the REST API and the cron trigger on one Uvicorn process.
    3. Shutdown: Stop the scheduler, close database and Redis connections.

Run with:
    uvicorn escrow_settlement.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_settlement.config import Settings, get_settings
from escrow_settlement.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from escrow_settlement.domain.store_protocol import EscrowStore


async def _open_store(settings: Settings) -> EscrowStore:
    if settings.store_backend == "memory":
        from escrow_settlement.infrastructure.memory_store import InMemoryEscrowStore

        return InMemoryEscrowStore()

    from escrow_settlement.infrastructure.database import SqlEscrowStore
    from escrow_settlement.infrastructure.database.engine import get_session_factory, init_db

    await init_db()
    return SqlEscrowStore(get_session_factory())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        store=settings.store_backend,
        payment_rail=settings.payment_rail_mode,
    )

    store = await _open_store(settings)

    from escrow_settlement.services.payment_service import PaymentService

    payments = PaymentService(
        simulate=settings.simulate_payments,
        api_key=settings.stripe_secret_key or None,
    )

    from escrow_settlement.infrastructure.redis_client import (
        RedisIdempotencyStore,
        close_redis,
        init_redis,
    )

    idempotency = None
    try:
        client = await init_redis()
        idempotency = RedisIdempotencyStore(client, ttl_seconds=settings.redis_idempotency_ttl_seconds)
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    from escrow_settlement.services.container import build_services

    services = build_services(store, payments, settings=settings, idempotency=idempotency)
    app.state.services = services

    scheduler: asyncio.Task | None = None
    if settings.scheduler_enabled:
        from escrow_settlement.orchestration.auto_release import run_scheduler_loop

        scheduler = asyncio.create_task(run_scheduler_loop(services))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    logger.info("app.shutting_down")
    if scheduler is not None:
        scheduler.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler
    if settings.store_backend == "sql":
        from escrow_settlement.infrastructure.database.engine import close_db

        await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Settlement",
        description=(
            "Marketplace escrow: hold the buyer's payment, evaluate settlement "
            "conditions, release to the seller or refund the buyer."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from escrow_settlement.api.middleware import setup_middleware

    setup_middleware(app)

    from escrow_settlement.api.routes.cron import router as cron_router
    from escrow_settlement.api.routes.escrow import router as escrow_router
    from escrow_settlement.api.routes.health import router as health_router
    from escrow_settlement.api.routes.platform import router as platform_router

    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(platform_router)
    app.include_router(cron_router)

    return app


# The app instance used by Uvicorn
app = create_app()
