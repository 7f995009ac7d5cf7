"""Scheduled job bodies and the lock-guarded runner around them.

Every job reports the same four counters (``scanned``, ``upserted``,
``skipped``, ``failed``) plus ``duration_ms`` and is persisted to ``job_runs``.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select

from ticketlab.data.cache import CacheEntity
from ticketlab.data.ingestion import (
    NOT_STARTED_STATUSES,
    OddsSnapshot,
    cached_odds,
    fetch_fixtures,
    fixtures_between,
    load_fixture_result,
    load_odds,
    load_predictions,
    store_fixtures,
    upsert_fixture,
)
from ticketlab.data.schemas import FINISHED_STATUSES, TeamStatsSnapshot
from ticketlab.db.database import get_session
from ticketlab.db.models import JobRun
from ticketlab.errors import BudgetExhausted, LockContention, ValidationError
from ticketlab.rules.qualifier import FixtureInputs
from ticketlab.services import Services

logger = logging.getLogger(__name__)

JOB_LOCK_MINUTES: Dict[str, int] = {
    "fixtures-refresh": 30,
    "stats-refresh": 60,
    "odds-backfill": 30,
    "predictions-refresh": 30,
    "selections-refresh": 15,
    "results-refresh": 30,
    "live-odds-refresh": 5,
}

DEFAULT_WINDOW_HOURS: Dict[str, int] = {
    "fixtures-refresh": 168,
    "stats-refresh": 48,
    "odds-backfill": 48,
    "predictions-refresh": 48,
    "selections-refresh": 168,
    "results-refresh": 72,
    "live-odds-refresh": 3,
}


@dataclass
class JobOptions:
    window_hours: Optional[int] = None
    force: bool = False
    deadline_seconds: Optional[float] = None


@dataclass
class JobReport:
    job_name: str
    scanned: int = 0
    upserted: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    status: str = "ok"
    partial: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "scanned": self.scanned,
            "upserted": self.upserted,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "partial": self.partial,
            "details": self.details,
        }

    def metrics(self) -> Dict[str, Any]:
        data = self.as_dict()
        for key in ("job_name", "status", "duration_ms"):
            data.pop(key)
        return data


_DONE = object()


def run_units(
    services: Services,
    report: JobReport,
    units: Iterable[Any],
    work: Callable[[Any], Any],
    *,
    deadline_seconds: Optional[float] = None,
) -> list[tuple[Any, Any]]:
    """Run ``work`` over ``units`` on a bounded pool.

    A failing unit increments ``failed`` and the batch continues. Past the soft
    deadline, or once the daily budget is spent, no new units are scheduled;
    in-flight units finish and the report is marked partial.
    """

    settings = services.settings
    workers = settings.job_workers
    budget = settings.job_soft_deadline_seconds if deadline_seconds is None else deadline_seconds
    deadline = time.monotonic() + budget
    pending = iter(units)
    results: list[tuple[Any, Any]] = []
    in_flight: Dict[Future, Any] = {}
    stop_reason: Optional[str] = None
    exhausted = False

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=report.job_name) as executor:
        while True:
            while stop_reason is None and not exhausted and len(in_flight) < workers:
                if time.monotonic() >= deadline:
                    stop_reason = "deadline"
                    break
                unit = next(pending, _DONE)
                if unit is _DONE:
                    exhausted = True
                    break
                in_flight[executor.submit(work, unit)] = unit
            if not in_flight:
                break
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                unit = in_flight.pop(future)
                try:
                    results.append((unit, future.result()))
                except BudgetExhausted as exc:
                    logger.warning("%s: %s", report.job_name, exc)
                    report.failed += 1
                    stop_reason = "budget_exhausted"
                except Exception as exc:
                    logger.warning("%s: unit %s failed: %s", report.job_name, unit, exc)
                    report.failed += 1

    if stop_reason is not None:
        remaining = sum(1 for _ in pending)
        report.partial = True
        report.details["not_scheduled"] = report.details.get("not_scheduled", 0) + remaining
        report.details["stopped_by"] = stop_reason
        if stop_reason == "budget_exhausted":
            report.status = "budget_exhausted"
        logger.warning("%s stopped early (%s); %d units not scheduled", report.job_name, stop_reason, remaining)
    return results


def _window(services: Services, job_name: str, options: JobOptions) -> tuple:
    hours = options.window_hours or DEFAULT_WINDOW_HOURS[job_name]
    now = services.now()
    return now, now + timedelta(hours=hours)


def _upcoming(services: Services, job_name: str, options: JobOptions):
    start, end = _window(services, job_name, options)
    return fixtures_between(
        start, end, statuses=NOT_STARTED_STATUSES, session_factory=services.session_factory
    )


def fixtures_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    start, end = _window(services, "fixtures-refresh", options)
    days = []
    day = start.date()
    while day <= end.date():
        days.append(day)
        day += timedelta(days=1)
    client, cache = services.client, services.cache
    fetched = run_units(
        services,
        report,
        days,
        lambda d: fetch_fixtures(client, cache, d, force=options.force),
        deadline_seconds=options.deadline_seconds,
    )
    summary: Counter[str] = Counter()
    for _, items in fetched:
        summary.update(store_fixtures(items, session_factory=services.session_factory))
    report.scanned = sum(summary.values())
    report.upserted = summary["inserted"] + summary["updated"]
    report.skipped = summary["unchanged"]
    report.failed += summary["malformed"]
    report.details["days"] = len(days)
    report.details.update(summary)


def stats_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    fixtures = _upcoming(services, "stats-refresh", options)
    team_ids = sorted({f.home_team_id for f in fixtures} | {f.away_team_id for f in fixtures})
    report.scanned = len(team_ids)
    aggregator = services.aggregator
    results = run_units(
        services,
        report,
        team_ids,
        lambda team_id: aggregator.refresh(team_id, force=options.force),
        deadline_seconds=options.deadline_seconds,
    )
    zero_sample = 0
    for _, (snapshot, recomputed) in results:
        if recomputed:
            report.upserted += 1
        else:
            report.skipped += 1
        if snapshot.sample_size == 0:
            zero_sample += 1
    report.details["fixtures"] = len(fixtures)
    report.details["zero_sample_teams"] = zero_sample


def odds_backfill(services: Services, report: JobReport, options: JobOptions) -> None:
    fixtures = _upcoming(services, "odds-backfill", options)
    report.scanned = len(fixtures)
    client, cache = services.client, services.cache

    def work(fixture_id: int) -> tuple[bool, OddsSnapshot]:
        lookup = cache.get(CacheEntity.ODDS, fixture_id)
        refetch = options.force or not lookup.hit or lookup.is_stale
        if not refetch:
            return False, cached_odds(cache, fixture_id)
        return True, load_odds(client, cache, fixture_id, force=True)

    results = run_units(
        services, report, [f.id for f in fixtures], work, deadline_seconds=options.deadline_seconds
    )
    quotes = 0
    empty = 0
    for _, (fetched, snapshot) in results:
        if fetched:
            report.upserted += 1
        else:
            report.skipped += 1
        quotes += len(snapshot.quotes)
        if not snapshot.quotes:
            empty += 1
    report.details.update(quotes=quotes, fixtures_without_quotes=empty)


def predictions_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    fixtures = _upcoming(services, "predictions-refresh", options)
    report.scanned = len(fixtures)
    client, cache = services.client, services.cache

    def work(fixture_id: int) -> bool:
        if not options.force and cache.get(CacheEntity.PREDICTIONS, fixture_id).is_fresh:
            return False
        load_predictions(client, cache, fixture_id, force=True)
        return True

    results = run_units(
        services, report, [f.id for f in fixtures], work, deadline_seconds=options.deadline_seconds
    )
    for _, fetched in results:
        if fetched:
            report.upserted += 1
        else:
            report.skipped += 1


def selections_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    """Qualify every upcoming fixture from cached stats and odds; makes no API calls."""

    start, end = _window(services, "selections-refresh", options)
    fixtures = fixtures_between(
        start, end, statuses=NOT_STARTED_STATUSES, session_factory=services.session_factory
    )
    cache = services.cache
    team_ids = sorted({f.home_team_id for f in fixtures} | {f.away_team_id for f in fixtures})
    stats = {
        int(key): TeamStatsSnapshot.model_validate(lookup.value)
        for key, lookup in cache.get_many(CacheEntity.TEAM_STATS, team_ids).items()
    }
    stale_odds = 0
    inputs: list[FixtureInputs] = []
    for fixture in fixtures:
        snapshot = cached_odds(cache, fixture.id)
        if snapshot is not None and snapshot.is_stale:
            stale_odds += 1
        inputs.append(
            FixtureInputs(
                fixture_id=fixture.id,
                league_id=fixture.league_id,
                country_code=fixture.country_code,
                kickoff=fixture.kickoff,
                home=stats.get(fixture.home_team_id),
                away=stats.get(fixture.away_team_id),
                quotes=snapshot.quotes if snapshot is not None else None,
            )
        )
    result = services.qualifier.run(inputs)
    report.scanned = len(fixtures)
    report.upserted = services.store.replace_window(start, end, result.candidates)
    report.skipped = len(result.misses)
    report.details["stages"] = dict(result.stages)
    report.details["misses"] = dict(Counter(miss.stage for miss in result.misses))
    report.details["rules_version"] = services.qualifier.version.value
    report.details["stale_odds"] = stale_odds


def live_odds_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    """Qualify in-play fixtures on uncached live prices and swap the live selection set."""

    now = services.now()
    hours = options.window_hours or DEFAULT_WINDOW_HOURS["live-odds-refresh"]
    fixtures = [
        f
        for f in fixtures_between(now - timedelta(hours=hours), now, session_factory=services.session_factory)
        if f.status not in FINISHED_STATUSES
    ]
    report.scanned = len(fixtures)
    client, cache = services.client, services.cache
    results = dict(
        run_units(
            services,
            report,
            [f.id for f in fixtures],
            lambda fixture_id: load_odds(client, cache, fixture_id, live=True),
            deadline_seconds=options.deadline_seconds,
        )
    )
    if report.status == "budget_exhausted":
        # Previous live set stays in place.
        report.skipped = len(results)
        return
    team_ids = sorted({f.home_team_id for f in fixtures} | {f.away_team_id for f in fixtures})
    stats = {
        int(key): TeamStatsSnapshot.model_validate(lookup.value)
        for key, lookup in cache.get_many(CacheEntity.TEAM_STATS, team_ids).items()
    }
    inputs = [
        FixtureInputs(
            fixture_id=fixture.id,
            league_id=fixture.league_id,
            country_code=fixture.country_code,
            kickoff=fixture.kickoff,
            home=stats.get(fixture.home_team_id),
            away=stats.get(fixture.away_team_id),
            quotes=results[fixture.id].quotes,
        )
        for fixture in fixtures
        if fixture.id in results
    ]
    result = services.qualifier.run(inputs)
    report.upserted = services.store.replace_live(result.candidates)
    report.skipped = len(result.misses)
    report.details["stages"] = dict(result.stages)


def results_refresh(services: Services, report: JobReport, options: JobOptions) -> None:
    now = services.now()
    hours = options.window_hours or DEFAULT_WINDOW_HOURS["results-refresh"]
    fixtures = [
        f
        for f in fixtures_between(
            now - timedelta(hours=hours), now, session_factory=services.session_factory
        )
        if f.status not in FINISHED_STATUSES
    ]
    report.scanned = len(fixtures)
    client, cache = services.client, services.cache
    results = run_units(
        services,
        report,
        [f.id for f in fixtures],
        lambda fixture_id: load_fixture_result(client, cache, fixture_id),
        deadline_seconds=options.deadline_seconds,
    )
    with get_session(services.session_factory) as session:
        for _, payload in results:
            if payload is None:
                report.skipped += 1
                continue
            outcome = upsert_fixture(session, payload)
            if outcome == "unchanged":
                report.skipped += 1
            else:
                report.upserted += 1
    report.details["selections_removed"] = services.store.delete_started(now)
    report.details["results_pruned"] = services.cache.cleanup_results()


JOBS: Dict[str, Callable[[Services, JobReport, JobOptions], None]] = {
    "fixtures-refresh": fixtures_refresh,
    "stats-refresh": stats_refresh,
    "odds-backfill": odds_backfill,
    "predictions-refresh": predictions_refresh,
    "selections-refresh": selections_refresh,
    "results-refresh": results_refresh,
    "live-odds-refresh": live_odds_refresh,
}


def record_run(services: Services, report: JobReport, started_at) -> None:
    with get_session(services.session_factory) as session:
        session.add(
            JobRun(
                job_name=report.job_name,
                status=report.status,
                started_at=started_at,
                duration_ms=report.duration_ms,
                metrics=report.metrics(),
            )
        )


def run_job(services: Services, job_name: str, options: JobOptions | None = None) -> JobReport:
    """Run one job single-flight under its lock and persist the report."""

    body = JOBS.get(job_name)
    if body is None:
        raise ValidationError(f"unknown job '{job_name}'")
    options = options or JobOptions()
    report = JobReport(job_name=job_name)
    started_at = services.now()
    started = time.monotonic()
    logger.info("Job %s starting (window=%s, force=%s)", job_name, options.window_hours, options.force)
    try:
        with services.lock.hold(job_name, JOB_LOCK_MINUTES[job_name]):
            body(services, report, options)
    except LockContention:
        report.status = "already_running"
        logger.info("Job %s already running; skipped", job_name)
    except BudgetExhausted as exc:
        report.status = "budget_exhausted"
        report.partial = True
        logger.warning("Job %s stopped: %s", job_name, exc)
    except Exception:
        report.status = "error"
        report.duration_ms = int((time.monotonic() - started) * 1000)
        record_run(services, report, started_at)
        logger.exception("Job %s failed", job_name)
        raise
    report.duration_ms = int((time.monotonic() - started) * 1000)
    if report.status == "ok" and report.partial:
        report.status = "partial"
    record_run(services, report, started_at)
    logger.info(
        "Job %s %s: scanned=%d upserted=%d skipped=%d failed=%d duration=%dms",
        job_name,
        report.status,
        report.scanned,
        report.upserted,
        report.skipped,
        report.failed,
        report.duration_ms,
    )
    return report


def last_run(services: Services, job_name: str) -> Optional[Dict[str, Any]]:
    with get_session(services.session_factory) as session:
        run = session.scalars(
            select(JobRun)
            .where(JobRun.job_name == job_name)
            .order_by(JobRun.started_at.desc(), JobRun.id.desc())
        ).first()
        if run is None:
            return None
        return {
            "job_name": run.job_name,
            "status": run.status,
            "started_at": run.started_at.isoformat(),
            "duration_ms": run.duration_ms,
            **(run.metrics or {}),
        }
