"""Cron trigger for the scheduled escrow jobs.

External schedulers (Vercel cron, Kubernetes CronJob, a plain crontab with
curl) call this endpoint instead of running the in-process loop. When
``CRON_SECRET`` is set the caller must send ``Authorization: Bearer <secret>``.
"""

from __future__ import annotations

import hmac
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException

from escrow_settlement.api.deps import get_services
from escrow_settlement.logging_config import get_logger
from escrow_settlement.orchestration.auto_release import run_all_escrow_jobs
from escrow_settlement.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/cron", tags=["Cron"])
logger = get_logger(__name__)


def verify_cron_secret(
    services: ServiceContainer = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> None:
    secret = services.settings.cron_secret
    if not secret:
        logger.warning("cron.secret_not_configured")
        return
    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        logger.warning("cron.unauthorized")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route(
    "/escrow-auto-release",
    methods=["GET", "POST"],
    summary="Run the auto-release sweep, tracking updates and reminders",
    dependencies=[Depends(verify_cron_secret)],
)
async def escrow_auto_release(
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    logger.info("cron.escrow_jobs_triggered")
    results = await run_all_escrow_jobs(services)
    return {"success": True, **results}
