"""Orchestration layer — scheduled escrow jobs."""

from escrow_settlement.orchestration.auto_release import (
    run_all_escrow_jobs,
    run_auto_release_sweep,
    run_scheduler_loop,
    send_escrow_reminders,
    update_tracking_statuses,
)

__all__ = [
    "run_all_escrow_jobs",
    "run_auto_release_sweep",
    "run_scheduler_loop",
    "send_escrow_reminders",
    "update_tracking_statuses",
]
