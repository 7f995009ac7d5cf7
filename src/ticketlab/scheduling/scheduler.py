"""APScheduler wiring for the refresh jobs."""

from __future__ import annotations

import logging
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ticketlab.config import configure_logging
from ticketlab.db.database import init_db
from ticketlab.scheduling.jobs import run_job
from ticketlab.scheduling.orchestrator import RefreshOrchestrator
from ticketlab.services import Services, get_services

logger = logging.getLogger(__name__)

JOB_TRIGGERS = {
    "fixtures-refresh": CronTrigger(hour="*/6", minute=5, timezone="UTC"),
    "stats-refresh": CronTrigger(hour=3, minute=0, timezone="UTC"),
    "odds-backfill": IntervalTrigger(minutes=30),
    "predictions-refresh": CronTrigger(hour="*/6", minute=20, timezone="UTC"),
    "selections-refresh": IntervalTrigger(minutes=15),
    "results-refresh": CronTrigger(minute=40, timezone="UTC"),
    "live-odds-refresh": IntervalTrigger(minutes=3),
}


def _run_safely(services: Services, job_name: str) -> None:
    try:
        run_job(services, job_name)
    except Exception:  # pragma: no cover
        logger.exception("Scheduled job %s failed", job_name)


def build_scheduler(services: Optional[Services] = None, *, with_pipeline: bool = False) -> BackgroundScheduler:
    services = services or get_services()
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
    )
    for job_name, trigger in JOB_TRIGGERS.items():
        scheduler.add_job(
            _run_safely,
            trigger=trigger,
            args=(services, job_name),
            id=job_name,
            name=job_name,
            replace_existing=True,
        )
    if with_pipeline:
        scheduler.add_job(
            RefreshOrchestrator(services).run,
            trigger=CronTrigger(hour="*/2", minute=50, timezone="UTC"),
            id="refresh-pipeline",
            name="refresh-pipeline",
            replace_existing=True,
        )
    return scheduler


def main() -> None:  # pragma: no cover - CLI convenience
    configure_logging()
    init_db()
    scheduler = build_scheduler()
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info("Scheduled %s next run at %s", job.id, job.next_run_time)
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopping scheduler")
        scheduler.shutdown(wait=True)


if __name__ == "__main__":  # pragma: no cover
    main()
