"""
app/scheduler/jobs.py

Periodic jobs for the import pipeline, run by an APScheduler
``BackgroundScheduler`` in the API process.

Jobs (UTC)
----------
  crawl_cycle       cron on SCHEDULER_CRAWL_HOUR / SCHEDULER_CRAWL_MINUTE,
                    minute 0 of every hour unless configured
  recovery_sweep    every SCHEDULER_RECOVERY_INTERVAL_MINUTES (default 10)
  scheduled_batch   every SCHEDULER_BATCH_INTERVAL_MINUTES, off when 0

``build_scheduler()`` returns the scheduler unstarted; ``app.main`` starts it
inside the FastAPI lifespan and shuts it down with ``wait=True``.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import SchedulerSettings, get_scheduler_settings
from app.services.batch_orchestrator import BatchAlreadyRunningError, get_batch_orchestrator
from app.services.crawl_job_service import get_crawl_job_service
from app.services.crawler_service import get_crawler_service
from app.services.recovery_service import get_recovery_service
from app.services.task_executor import ThreadTaskExecutor
from db.models.crawl_run import CrawlRunTrigger
from db.session import SessionLocal

logger = logging.getLogger(__name__)

# One instance per job; a late tick collapses into a single run.
_JOB_DEFAULTS = {"max_instances": 1, "coalesce": True, "misfire_grace_time": 300}


def run_crawl_cycle() -> None:
    """
    Run one tracked crawl cycle unless this process is already crawling
    (for example a cycle started over HTTP).
    """
    if get_crawler_service().is_running:
        logger.info("Scheduler: crawl_cycle skipped, a crawl is already running")
        return

    run = get_crawl_job_service().run_now(trigger=CrawlRunTrigger.SCHEDULER)
    if run is None:
        logger.warning("Scheduler: crawl_cycle finished without a run record")
        return
    logger.info("Scheduler: crawl_cycle run_id=%s status=%s result=%s", run.id, run.status, run.result_payload)


def run_recovery_sweep() -> None:
    with SessionLocal() as db:
        try:
            get_recovery_service().sweep(db)
        except Exception as exc:  # noqa: BLE001  next tick retries the sweep
            db.rollback()
            logger.warning("Scheduler: recovery_sweep failed: %s", exc)


def run_scheduled_batch() -> None:
    """Start a batch run with default settings unless one is already running."""
    with SessionLocal() as db:
        try:
            run = get_batch_orchestrator().start(db, ThreadTaskExecutor(name_prefix="batch-run"))
        except BatchAlreadyRunningError:
            logger.info("Scheduler: scheduled_batch skipped, a batch run is already active")
            return
    logger.info("Scheduler: scheduled_batch started run_id=%s", run.id)


def build_scheduler(settings: SchedulerSettings | None = None) -> BackgroundScheduler:
    settings = settings or get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC", job_defaults=_JOB_DEFAULTS)

    scheduler.add_job(
        run_crawl_cycle,
        "cron",
        hour=settings.crawl_cron_hour,
        minute=settings.crawl_cron_minute,
        id="crawl_cycle",
        name="Catalog crawl cycle",
        replace_existing=True,
        misfire_grace_time=600,
    )
    scheduler.add_job(
        run_recovery_sweep,
        "interval",
        minutes=settings.recovery_interval_minutes,
        id="recovery_sweep",
        name="Stale work recovery sweep",
        replace_existing=True,
    )
    if settings.batch_interval_minutes > 0:
        scheduler.add_job(
            run_scheduled_batch,
            "interval",
            minutes=settings.batch_interval_minutes,
            id="scheduled_batch",
            name="Scheduled batch import",
            replace_existing=True,
        )
    return scheduler
