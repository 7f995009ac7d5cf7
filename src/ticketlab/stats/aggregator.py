"""Last-five rolling averages per team."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

import pandas as pd

from ticketlab.clock import NowFn, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.data.api_football import ApiFootballClient
from ticketlab.data.cache import CacheEntity, CacheStore
from ticketlab.data.ingestion import load_fixture_statistics
from ticketlab.data.schemas import FINISHED_STATUSES, MARKETS, TeamStatsSnapshot
from ticketlab.errors import ClientFetchError

logger = logging.getLogger(__name__)

WINDOW = 5
STAT_TYPES: dict[str, tuple[str, ...]] = {
    "corners": ("Corner Kicks", "Corners"),
    "fouls": ("Fouls",),
    "offsides": ("Offsides",),
}


def parse_stat_value(raw: Any) -> float | None:
    """Numeric value of a statistic cell; ``None`` for absent or unparseable values."""

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else None
    cleaned = "".join(ch for ch in str(raw) if ch.isdigit() or ch in ".-")
    try:
        return float(cleaned)
    except ValueError:
        return None


def _stat(rows: list[dict[str, Any]], *types: str) -> float | None:
    wanted = [t.lower() for t in types]
    for name in wanted:
        for row in rows:
            if str(row.get("type") or "").lower() == name:
                return parse_stat_value(row.get("value"))
    return None


def team_statistics(team_id: int, statistics: list[dict[str, Any]]) -> dict[str, float | None]:
    """Extract corners, fouls, offsides and cards for ``team_id`` from a statistics payload."""

    entry = next(
        (item for item in statistics if _safe_int((item.get("team") or {}).get("id")) == team_id),
        None,
    )
    if entry is None:
        return {"corners": None, "fouls": None, "offsides": None, "cards": None}
    rows = entry.get("statistics") or []
    values = {metric: _stat(rows, *types) for metric, types in STAT_TYPES.items()}
    yellow = _stat(rows, "Yellow Cards")
    red = _stat(rows, "Red Cards")
    values["cards"] = None if yellow is None and red is None else (yellow or 0.0) + (red or 0.0)
    return values


def _safe_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def team_goals(team_id: int, item: dict[str, Any]) -> float | None:
    teams = item.get("teams") or {}
    goals = item.get("goals") or {}
    fulltime = (item.get("score") or {}).get("fulltime") or {}
    for side in ("home", "away"):
        if _safe_int((teams.get(side) or {}).get("id")) == team_id:
            value = goals.get(side)
            if value is None:
                value = fulltime.get(side)
            return parse_stat_value(value)
    return None


def summarize(team_id: int, rows: list[dict[str, Any]], computed_at: datetime) -> TeamStatsSnapshot:
    """Average each metric over the fixtures that report it.

    ``sample_size`` counts fixtures used, independently of per-metric gaps.
    """

    frame = pd.DataFrame(rows, columns=["fixture_id", *MARKETS])
    means = frame[list(MARKETS)].astype(float).mean(skipna=True)
    averages = {metric: 0.0 if pd.isna(means[metric]) else float(means[metric]) for metric in MARKETS}
    return TeamStatsSnapshot(
        team_id=team_id,
        sample_size=len(frame),
        fixture_ids=[int(fx) for fx in frame["fixture_id"]],
        computed_at=computed_at,
        **averages,
    )


def last_finished(items: list[dict[str, Any]], window: int = WINDOW) -> list[dict[str, Any]]:
    """Most recent finished fixtures first, capped at ``window``."""

    finished = []
    for item in items:
        fixture = item.get("fixture") or {}
        status = fixture.get("status")
        if isinstance(status, dict):
            status = status.get("short")
        if status in FINISHED_STATUSES and fixture.get("id") and fixture.get("timestamp"):
            finished.append(item)
    finished.sort(key=lambda it: it["fixture"]["timestamp"], reverse=True)
    return finished[:window]


class StatsAggregator:
    """Compute and cache ``TeamStatsSnapshot`` objects."""

    def __init__(
        self,
        client: ApiFootballClient,
        cache: CacheStore,
        settings: Settings | None = None,
        *,
        now_fn: NowFn | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.settings = settings or get_settings()
        self._now = now_fn or utcnow

    def _season(self) -> int:
        return self.settings.season or self._now().year

    def compute(self, team_id: int) -> TeamStatsSnapshot:
        items = last_finished(self.client.get_team_last_fixtures(team_id, self._season(), last=WINDOW))
        rows: list[dict[str, Any]] = []
        for item in items:
            fixture_id = int(item["fixture"]["id"])
            try:
                statistics = load_fixture_statistics(self.client, self.cache, fixture_id)
            except ClientFetchError as exc:
                logger.warning("No statistics for fixture %s: %s", fixture_id, exc)
                statistics = []
            row: dict[str, Any] = {"fixture_id": fixture_id, "goals": team_goals(team_id, item)}
            row.update(team_statistics(team_id, statistics))
            rows.append(row)
        snapshot = summarize(team_id, rows, self._now())
        if snapshot.sample_size == 0:
            logger.info("Team %s has no finished fixtures; storing zero-sample snapshot", team_id)
        return snapshot

    def cached(self, team_id: int) -> TeamStatsSnapshot | None:
        lookup = self.cache.get(CacheEntity.TEAM_STATS, team_id)
        if not lookup.hit:
            return None
        return TeamStatsSnapshot.model_validate(lookup.value)

    def refresh(self, team_id: int, *, force: bool = False) -> tuple[TeamStatsSnapshot, bool]:
        """Return the team's snapshot and whether it was recomputed."""

        if not force:
            lookup = self.cache.get(CacheEntity.TEAM_STATS, team_id)
            if lookup.is_fresh:
                return TeamStatsSnapshot.model_validate(lookup.value), False
        snapshot = self.compute(team_id)
        self.cache.put(CacheEntity.TEAM_STATS, team_id, snapshot.model_dump(mode="json"))
        return snapshot, True
