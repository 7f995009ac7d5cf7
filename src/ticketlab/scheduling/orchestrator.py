"""Supervising orchestrator for one full refresh pipeline run."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ticketlab.errors import LockContention
from ticketlab.scheduling.jobs import JobOptions, JobReport, record_run, run_job
from ticketlab.services import Services

logger = logging.getLogger(__name__)

PIPELINE_JOB_NAME = "refresh-pipeline"
PIPELINE_LOCK_MINUTES = 120
PIPELINE_STAGES: tuple[str, ...] = (
    "fixtures-refresh",
    "stats-refresh",
    "odds-backfill",
    "selections-refresh",
)
# Stages that only read the cache still run after the API budget is spent.
OFFLINE_STAGES = frozenset({"selections-refresh"})


@dataclass
class PipelineReport:
    status: str = "ok"
    stages: List[JobReport] = field(default_factory=list)
    duration_ms: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "duration_ms": self.duration_ms,
            "stages": [stage.as_dict() for stage in self.stages],
        }


class RefreshOrchestrator:
    """Run fixtures -> stats -> odds -> selections in order.

    The run is complete only once every stage has reported. A stage that
    exhausts the API budget stops the remaining fetch stages; the selection
    refresh still runs on whatever is cached.
    """

    def __init__(self, services: Services, stages: tuple[str, ...] = PIPELINE_STAGES) -> None:
        self.services = services
        self.stage_names = stages

    def run(self, options: Optional[JobOptions] = None) -> PipelineReport:
        options = options or JobOptions()
        report = PipelineReport()
        started_at = self.services.now()
        started = time.monotonic()
        try:
            with self.services.lock.hold(PIPELINE_JOB_NAME, PIPELINE_LOCK_MINUTES):
                self._run_stages(report, options)
        except LockContention:
            report.status = "already_running"
            logger.info("Pipeline already running; skipped")
        report.duration_ms = int((time.monotonic() - started) * 1000)

        summary = JobReport(
            job_name=PIPELINE_JOB_NAME,
            scanned=sum(s.scanned for s in report.stages),
            upserted=sum(s.upserted for s in report.stages),
            skipped=sum(s.skipped for s in report.stages),
            failed=sum(s.failed for s in report.stages),
            duration_ms=report.duration_ms,
            status=report.status,
            partial=report.status not in ("ok", "already_running"),
            details={"stages": {s.job_name: s.status for s in report.stages}},
        )
        record_run(self.services, summary, started_at)
        logger.info("Pipeline finished with status %s in %dms", report.status, report.duration_ms)
        return report

    def _run_stages(self, report: PipelineReport, options: JobOptions) -> None:
        budget_spent = False
        for name in self.stage_names:
            if budget_spent and name not in OFFLINE_STAGES:
                report.stages.append(JobReport(job_name=name, status="skipped", partial=True))
                continue
            try:
                stage = run_job(self.services, name, options)
            except Exception as exc:
                logger.exception("Pipeline stage %s raised", name)
                stage = JobReport(job_name=name, status="error", details={"error": str(exc)})
            report.stages.append(stage)
            if stage.status == "budget_exhausted":
                budget_spent = True
        statuses = {stage.status for stage in report.stages}
        if statuses <= {"ok"}:
            report.status = "ok"
        elif "error" in statuses:
            report.status = "error"
        else:
            report.status = "partial"
