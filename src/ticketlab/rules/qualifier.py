"""Turn stats and normalized odds into tradable selections."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ticketlab.clock import NowFn, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.data.schemas import OddsQuote, TeamStatsSnapshot
from ticketlab.errors import QualificationMiss
from ticketlab.rules.guards import LINE_TOLERANCE, in_odds_band, is_suspicious
from ticketlab.rules.matrix import RulesVersion, combine, qualify
from ticketlab.stats.probability import edge_pct, market_probability

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = (
    "fixtures_scanned",
    "missing_stats",
    "insufficient_sample",
    "missing_odds",
    "no_rule",
    "no_exact_line",
    "out_of_band",
    "suspicious_odds",
    "qualified",
)


def _furthest(current: str, stage: str) -> str:
    return stage if STAGES.index(stage) > STAGES.index(current) else current


@dataclass
class Candidate:
    """A qualified selection before it reaches the selection store."""

    fixture_id: int
    league_id: int
    country_code: Optional[str]
    utc_kickoff: datetime
    market: str
    side: str
    line: float
    bookmaker: str
    odds: float
    model_prob: float
    edge_pct: float
    sample_size: int
    rules_version: str
    computed_at: datetime
    is_live: bool = False
    combined_snapshot: dict[str, float] = field(default_factory=dict)

    @property
    def key(self) -> tuple[int, str, str, float]:
        return (self.fixture_id, self.market, self.side, round(self.line, 2))

    def as_row(self) -> dict:
        return asdict(self)


@dataclass
class FixtureInputs:
    fixture_id: int
    league_id: int
    country_code: Optional[str]
    kickoff: datetime
    home: Optional[TeamStatsSnapshot]
    away: Optional[TeamStatsSnapshot]
    quotes: Optional[list[OddsQuote]]


@dataclass
class QualificationResult:
    candidates: list[Candidate] = field(default_factory=list)
    stages: Counter[str] = field(default_factory=Counter)
    misses: list[QualificationMiss] = field(default_factory=list)


class RulesQualifier:
    """Apply one rules version, the odds band and the suspicious-odds guard.

    Fixture-level stages (``missing_stats``, ``insufficient_sample``,
    ``missing_odds``, ``no_rule``) count fixtures; the remaining stages count
    individual picks or quotes.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        version: RulesVersion | str | None = None,
        *,
        now_fn: NowFn | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.version = RulesVersion(version or self.settings.rules_version)
        self._now = now_fn or utcnow

    def qualify_fixture(self, inputs: FixtureInputs, stages: Counter[str]) -> list[Candidate]:
        """Qualify one fixture; raises ``QualificationMiss`` when nothing survives."""

        stages["fixtures_scanned"] += 1
        fixture_id = inputs.fixture_id
        home, away = inputs.home, inputs.away
        if home is None or away is None:
            stages["missing_stats"] += 1
            raise QualificationMiss(fixture_id, "missing_stats")
        minimum = self.settings.min_sample_size
        if not (home.is_usable(minimum) and away.is_usable(minimum)):
            stages["insufficient_sample"] += 1
            raise QualificationMiss(fixture_id, "insufficient_sample")
        if not inputs.quotes:
            stages["missing_odds"] += 1
            raise QualificationMiss(fixture_id, "missing_odds")

        combined = combine(home, away)
        outcomes = qualify(self.version, combined)
        if not outcomes:
            stages["no_rule"] += 1
            raise QualificationMiss(fixture_id, "no_rule")

        computed_at = self._now()
        sample_size = min(home.sample_size, away.sample_size)
        candidates: list[Candidate] = []
        last_drop = "no_exact_line"
        for outcome in outcomes:
            matches = [
                q
                for q in inputs.quotes
                if q.market == outcome.market
                and q.side == outcome.side
                and abs(q.line - outcome.line) < LINE_TOLERANCE
            ]
            if not matches:
                stages["no_exact_line"] += 1
                continue
            model_prob = market_probability(
                outcome.market, outcome.side, outcome.line, home, away, self.settings
            )
            for quote in matches:
                if not in_odds_band(quote.odds, self.settings):
                    stages["out_of_band"] += 1
                    last_drop = _furthest(last_drop, "out_of_band")
                    continue
                if is_suspicious(quote.market, quote.line, quote.odds, model_prob, self.settings):
                    stages["suspicious_odds"] += 1
                    last_drop = _furthest(last_drop, "suspicious_odds")
                    continue
                stages["qualified"] += 1
                candidates.append(
                    Candidate(
                        fixture_id=fixture_id,
                        league_id=inputs.league_id,
                        country_code=inputs.country_code,
                        utc_kickoff=inputs.kickoff,
                        market=quote.market,
                        side=quote.side,
                        line=outcome.line,
                        bookmaker=quote.bookmaker,
                        odds=quote.odds,
                        is_live=quote.is_live,
                        model_prob=round(model_prob, 6),
                        edge_pct=round(edge_pct(model_prob, quote.odds), 4),
                        sample_size=sample_size,
                        rules_version=self.version.value,
                        computed_at=computed_at,
                        combined_snapshot=combined,
                    )
                )
        if not candidates:
            raise QualificationMiss(fixture_id, last_drop)
        return candidates

    def run(self, fixtures: Iterable[FixtureInputs]) -> QualificationResult:
        result = QualificationResult()
        for inputs in fixtures:
            try:
                result.candidates.extend(self.qualify_fixture(inputs, result.stages))
            except QualificationMiss as miss:
                logger.debug("%s", miss)
                result.misses.append(miss)
        logger.info(
            "Qualified %d selections from %d fixtures (%s)",
            len(result.candidates),
            result.stages["fixtures_scanned"],
            self.version.value,
        )
        return result
