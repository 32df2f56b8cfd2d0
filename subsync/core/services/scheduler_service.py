"""
Scheduler Service - APScheduler integration for subscription sweeps.

Jobs:
- subscription_sweep: every SWEEP_INTERVAL_MINUTES, runs SubscriptionSweeper.run_all()
- checkout_purge: daily at 03:00, drops expired checkout intents

Sweeps are idempotent, so several hosts running the scheduler is safe (just redundant).
"""
import logging
from typing import List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from subsync.core.config import get_settings
from subsync.core.services.subscription_service import default_subscription_service
from subsync.core.services.sweep_service import SubscriptionSweeper

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "subscription_sweep"
PURGE_JOB_ID = "checkout_purge"

_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the singleton scheduler."""
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(3)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        logger.info("APScheduler initialized")

    return _scheduler


def start_scheduler():
    """Start scheduler and register the sweep jobs."""
    scheduler = get_scheduler()
    if not scheduler.running:
        _add_jobs(scheduler)
        scheduler.start()
        logger.info("APScheduler started")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("APScheduler shutdown")
    _scheduler = None


def get_scheduler_jobs() -> List[dict]:
    """List all scheduler jobs."""
    scheduler = get_scheduler()
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]


def _add_jobs(scheduler: BackgroundScheduler):
    minutes = max(get_settings().sweep_interval_minutes, 1)

    scheduler.add_job(
        func=run_sweep,
        trigger=IntervalTrigger(minutes=minutes),
        id=SWEEP_JOB_ID,
        name="Subscription sweep",
        replace_existing=True,
    )
    scheduler.add_job(
        func=run_checkout_purge,
        trigger=CronTrigger(hour=3, minute=0),
        id=PURGE_JOB_ID,
        name="Expired checkout purge",
        replace_existing=True,
    )
    logger.info(f"Scheduled jobs: {SWEEP_JOB_ID} (every {minutes} min), {PURGE_JOB_ID} (daily 03:00)")


def run_sweep():
    """Execute all sweeps (called by APScheduler)."""
    logger.info("[Scheduler] Running subscription sweep")
    try:
        report = SubscriptionSweeper(default_subscription_service()).run_all()
    except Exception as e:
        logger.error(f"[Scheduler] Subscription sweep failed: {e}")
        return None
    return report


def run_checkout_purge():
    try:
        SubscriptionSweeper(default_subscription_service()).purge_checkout_intents()
    except Exception as e:
        logger.error(f"[Scheduler] Checkout purge failed: {e}")
