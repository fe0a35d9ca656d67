"""
Background scheduler.

Runs the expiry sweep on a fixed interval with APScheduler, in-process with the
API. The sweep is idempotent, so overlapping or repeated runs are harmless;
``max_instances=1`` keeps a slow run from stacking up anyway.
"""
from datetime import timezone
from typing import Dict, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from electionpoll.core.config import settings
from electionpoll.db.session import get_db_context
from electionpoll.services.lifecycle import sweep_expired_polls

logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "poll_sweep"

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def sweep_job() -> Optional[Dict[str, int]]:
    """Run one sweep in its own session; never raises."""
    try:
        with get_db_context() as db:
            return sweep_expired_polls(db)
    except Exception as e:
        logger.error("poll_sweep_job_failed", error=str(e), exc_info=True)
        return None


def get_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone=timezone.utc)
    return _scheduler


def start_scheduler(interval_seconds: Optional[int] = None) -> BackgroundScheduler:
    """Start the scheduler with the sweep job; a running scheduler is left alone."""
    scheduler = get_scheduler()
    if scheduler.running:
        logger.info("scheduler_already_running")
        return scheduler

    interval = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
    scheduler.add_job(
        sweep_job,
        trigger=IntervalTrigger(seconds=interval),
        id=SWEEP_JOB_ID,
        name="Poll expiry sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("scheduler_started", interval_seconds=interval)
    return scheduler


def stop_scheduler() -> None:
    """Stop the scheduler, waiting for a running sweep to finish."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("scheduler_stopped")

    _scheduler = None
