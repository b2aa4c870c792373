# planner_core/scheduler.py
"""
Periodic maintenance jobs for the generation pipeline.

Uses APScheduler to run:
- the stale PENDING sweep (tickets whose response never came)
- reclamation of fully generated batch records

The scheduler is owned by the Coordinator, which starts it after the queues
are ready and shuts it down before closing them.
"""

import logging
from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from planner_core.services.ticket_generation.maintenance import (
    expire_stale_pending,
    reclaim_completed_batches,
)

logger = logging.getLogger(__name__)


def _on_job_error(event):
    exc = event.exception
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def build_scheduler(session_factory: Callable[[], Session]) -> BackgroundScheduler:
    """Create (but do not start) the maintenance scheduler."""
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )

    # Runs every 5 minutes; the timeout itself is PENDING_TIMEOUT_MINUTES.
    scheduler.add_job(
        func=expire_stale_pending,
        args=[session_factory],
        trigger=IntervalTrigger(minutes=5),
        id="expire_stale_pending",
        name="Error Out Stale PENDING Tickets",
        replace_existing=True,
    )
    logger.info("Scheduled job: expire_stale_pending (every 5 minutes)")

    scheduler.add_job(
        func=reclaim_completed_batches,
        args=[session_factory],
        trigger=IntervalTrigger(hours=1),
        id="reclaim_completed_batches",
        name="Reclaim Completed Generation Batches",
        replace_existing=True,
    )
    logger.info("Scheduled job: reclaim_completed_batches (every hour)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
    return scheduler


def get_scheduler_status(scheduler: BackgroundScheduler) -> dict:
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger),
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs,
    }
