"""Persistence and read paths for qualified selections."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import sessionmaker

from ticketlab.clock import NowFn, utc_midnight, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.data.schemas import MARKETS
from ticketlab.db.database import get_session
from ticketlab.db.models import JobRun, OptimizedSelection
from ticketlab.errors import ValidationError
from ticketlab.rules.qualifier import STAGES, Candidate

logger = logging.getLogger(__name__)

QUERY_WINDOW = timedelta(days=7)
MAX_LIMIT = 200
REFRESH_JOB_NAME = "selections-refresh"


def dedupe(candidates: Iterable[Candidate], *, show_all: bool = False, keep: int = 3) -> list[Candidate]:
    """Best price per (fixture, market, side, line).

    With ``show_all`` up to ``keep`` distinct bookmakers survive, highest odds first.
    """

    groups: dict[tuple, list[Candidate]] = defaultdict(list)
    for candidate in candidates:
        groups[candidate.key].append(candidate)
    limit = keep if show_all else 1
    kept: list[Candidate] = []
    for rows in groups.values():
        rows.sort(key=lambda c: (-c.odds, c.bookmaker))
        seen: set[str] = set()
        for row in rows:
            if row.bookmaker in seen:
                continue
            seen.add(row.bookmaker)
            kept.append(row)
            if len(seen) >= limit:
                break
    return kept


def _to_candidate(row: OptimizedSelection) -> Candidate:
    return Candidate(
        fixture_id=row.fixture_id,
        league_id=row.league_id,
        country_code=row.country_code,
        utc_kickoff=row.utc_kickoff,
        market=row.market,
        side=row.side,
        line=row.line,
        bookmaker=row.bookmaker,
        odds=row.odds,
        is_live=row.is_live,
        model_prob=row.model_prob,
        edge_pct=row.edge_pct,
        sample_size=row.sample_size,
        rules_version=row.rules_version,
        computed_at=row.computed_at,
        combined_snapshot=dict(row.combined_snapshot or {}),
    )


def candidate_to_dict(candidate: Candidate) -> dict[str, Any]:
    row = candidate.as_row()
    row["utc_kickoff"] = candidate.utc_kickoff.isoformat()
    row["computed_at"] = candidate.computed_at.isoformat()
    return row


@dataclass
class SelectionQuery:
    date: date
    market: str
    side: str = "over"
    line: Optional[float] = None
    min_odds: float = 1.25
    country_code: Optional[str] = None
    league_ids: list[int] = field(default_factory=list)
    live: bool = False
    show_all_odds: bool = False
    limit: int = 50
    offset: int = 0

    def validate(self) -> None:
        if self.market not in MARKETS:
            raise ValidationError(f"market must be one of {', '.join(MARKETS)}")
        if self.side not in ("over", "under"):
            raise ValidationError("side must be 'over' or 'under'")
        if not 1 <= self.limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
        if self.offset < 0:
            raise ValidationError("offset must be >= 0")
        if self.min_odds <= 1.0:
            raise ValidationError("minOdds must be greater than 1.0")

    @property
    def window(self) -> tuple[datetime, datetime]:
        start = utc_midnight(self.date)
        return start, start + QUERY_WINDOW


@dataclass
class SelectionPage:
    selections: list[dict[str, Any]]
    count: int
    total_qualified: int
    window: dict[str, str]
    debug: dict[str, Any]
    reasons: list[str] = field(default_factory=list)


class SelectionStore:
    """Owns ``optimized_selections``: refresh replaces a window, reads paginate."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        settings: Settings | None = None,
        *,
        now_fn: NowFn | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._now = now_fn or utcnow

    def replace_live(self, candidates: Sequence[Candidate]) -> int:
        """Swap the whole in-play selection set; live prices are never merged."""

        kept = [
            c
            for c in dedupe(candidates, show_all=True, keep=self.settings.keep_top_bookmakers)
            if c.is_live and self.settings.odds_min <= c.odds <= self.settings.odds_max
        ]
        with get_session(self.session_factory) as session:
            removed = session.execute(
                delete(OptimizedSelection).where(OptimizedSelection.is_live.is_(True))
            ).rowcount
            session.add_all(OptimizedSelection(**c.as_row()) for c in kept)
        logger.info("Replaced %s live selections with %d", removed, len(kept))
        return len(kept)

    def replace_window(self, start: datetime, end: datetime, candidates: Sequence[Candidate]) -> int:
        """Swap the prematch selection set for fixtures kicking off in ``[start, end)``.

        Rows of the same fixtures stored under an older kickoff are dropped too,
        so a rescheduled match is keyed once by fixture+market+side+line+bookmaker.
        """

        kept = [
            c
            for c in dedupe(candidates, show_all=True, keep=self.settings.keep_top_bookmakers)
            if self.settings.odds_min <= c.odds <= self.settings.odds_max
        ]
        fixture_ids = sorted({c.fixture_id for c in kept})
        with get_session(self.session_factory) as session:
            removed = session.execute(
                delete(OptimizedSelection).where(
                    OptimizedSelection.is_live.is_(False),
                    or_(
                        and_(OptimizedSelection.utc_kickoff >= start, OptimizedSelection.utc_kickoff < end),
                        OptimizedSelection.fixture_id.in_(fixture_ids),
                    ),
                )
            ).rowcount
            session.add_all(OptimizedSelection(**c.as_row()) for c in kept)
        logger.info("Replaced %s selections with %d in [%s, %s)", removed, len(kept), start, end)
        return len(kept)

    def delete_started(self, now: datetime | None = None) -> int:
        now = now or self._now()
        with get_session(self.session_factory) as session:
            return session.execute(
                delete(OptimizedSelection).where(
                    OptimizedSelection.utc_kickoff <= now,
                    OptimizedSelection.is_live.is_(False),
                )
            ).rowcount or 0

    def _window_rows(self, start: datetime, end: datetime, live: Optional[bool] = None) -> list[Candidate]:
        stmt = select(OptimizedSelection).where(
            OptimizedSelection.rules_version == self.settings.rules_version,
            OptimizedSelection.utc_kickoff >= start,
            OptimizedSelection.utc_kickoff < end,
        )
        if live is not None:
            stmt = stmt.where(OptimizedSelection.is_live.is_(live))
        with get_session(self.session_factory) as session:
            rows = session.scalars(stmt.order_by(OptimizedSelection.utc_kickoff, OptimizedSelection.id))
            return [_to_candidate(row) for row in rows]

    def _last_refresh(self) -> dict[str, Any]:
        with get_session(self.session_factory) as session:
            run = session.scalars(
                select(JobRun)
                .where(JobRun.job_name == REFRESH_JOB_NAME)
                .order_by(JobRun.started_at.desc(), JobRun.id.desc())
            ).first()
            if run is None:
                return {}
            return {"status": run.status, "started_at": run.started_at.isoformat(), **(run.metrics or {})}

    def query(self, request: SelectionQuery) -> SelectionPage:
        request.validate()
        start, end = request.window
        rows = self._window_rows(start, end, live=request.live)
        funnel: dict[str, int] = {"in_window": len(rows)}

        rows = [
            r
            for r in rows
            if r.market == request.market
            and r.side == request.side
            and (request.line is None or abs(r.line - request.line) < 0.01)
        ]
        funnel["market_match"] = len(rows)
        rows = [r for r in rows if r.odds >= request.min_odds]
        funnel["min_odds"] = len(rows)
        if request.country_code:
            wanted = request.country_code.lower()
            rows = [r for r in rows if (r.country_code or "").lower() == wanted]
        if request.league_ids:
            rows = [r for r in rows if r.league_id in set(request.league_ids)]
        funnel["scope"] = len(rows)

        rows = dedupe(rows, show_all=request.show_all_odds, keep=self.settings.keep_top_bookmakers)
        rows.sort(key=lambda r: (r.utc_kickoff, r.fixture_id, -r.odds))
        funnel["deduped"] = len(rows)
        total = len(rows)
        page = rows[request.offset : request.offset + request.limit]

        refresh = self._last_refresh()
        page_result = SelectionPage(
            selections=[candidate_to_dict(r) for r in page],
            count=len(page),
            total_qualified=total,
            window={"start": start.isoformat(), "end": end.isoformat()},
            debug={"counters": refresh, "stages": funnel},
        )
        if not page:
            page_result.reasons = self._reasons(request, funnel, refresh)
        return page_result

    def _reasons(self, request: SelectionQuery, funnel: dict[str, int], refresh: dict[str, Any]) -> list[str]:
        reasons: list[str] = []
        line = f" {request.line}" if request.line is not None else ""
        if funnel["in_window"] == 0:
            reasons.append(
                f"in_window=0: no {self.settings.rules_version} selections stored for this window"
            )
        elif funnel["market_match"] == 0:
            reasons.append(f"market_match=0: no {request.market} {request.side}{line} selections in window")
        elif funnel["min_odds"] == 0:
            reasons.append(f"min_odds=0: every {request.market} selection is priced below {request.min_odds:.2f}")
        elif funnel["scope"] == 0:
            reasons.append("scope=0: country/league filters excluded every selection")
        elif funnel["deduped"] > 0:
            reasons.append(f"offset={request.offset} is past the last of {funnel['deduped']} selections")
        stages = (refresh.get("details") or {}).get("stages") or {}
        for stage in STAGES:
            if stage == "fixtures_scanned":
                continue
            if stages.get(stage):
                reasons.append(f"last refresh {stage}={stages[stage]}")
        if not refresh:
            reasons.append("selections-refresh has not run yet")
        return reasons

    def ticket_pool(
        self,
        include_markets: Sequence[str] = (),
        exclude_markets: Sequence[str] = (),
        *,
        min_odds: Optional[float] = None,
        max_odds: Optional[float] = None,
        horizon: timedelta = QUERY_WINDOW,
    ) -> tuple[list[Candidate], Counter[str]]:
        """Best-price prematch candidates for fixtures that have not kicked off yet."""

        now = self._now()
        low = max(min_odds or self.settings.odds_min, self.settings.odds_min)
        high = min(max_odds or self.settings.odds_max, self.settings.odds_max)
        rows = self._window_rows(now, now + horizon, live=False)
        diagnostics: Counter[str] = Counter(stored=len(rows))
        if include_markets:
            rows = [r for r in rows if r.market in set(include_markets)]
        rows = [r for r in rows if r.market not in set(exclude_markets)]
        diagnostics["market_match"] = len(rows)
        rows = [r for r in rows if low <= r.odds <= high]
        diagnostics["odds_band"] = len(rows)
        rows = dedupe(rows)
        diagnostics["pool"] = len(rows)
        return rows, diagnostics
