"""Pydantic schemas for API-Football payloads and internal data."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from ticketlab.clock import from_timestamp

Market = Literal["goals", "corners", "cards", "fouls", "offsides"]
Side = Literal["over", "under"]

MARKETS: tuple[str, ...] = ("goals", "corners", "cards", "fouls", "offsides")
FINISHED_STATUSES = frozenset({"FT", "AET", "PEN"})


class TeamRef(BaseModel):
    id: int
    name: str | None = None


class FixturePayload(BaseModel):
    """Subset of an API-Football ``/fixtures`` response item."""

    id: int
    timestamp: int
    status: str
    league_id: int
    country: str | None = None
    season: int | None = None
    home: TeamRef
    away: TeamRef
    home_goals: int | None = None
    away_goals: int | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "FixturePayload":
        fixture = item.get("fixture") or {}
        league = item.get("league") or {}
        teams = item.get("teams") or {}
        goals = item.get("goals") or {}
        fulltime = (item.get("score") or {}).get("fulltime") or {}
        status = fixture.get("status")
        if isinstance(status, dict):
            status = status.get("short")
        return cls(
            id=fixture["id"],
            timestamp=fixture["timestamp"],
            status=status or "NS",
            league_id=league.get("id", 0),
            country=league.get("country"),
            season=league.get("season"),
            home=TeamRef(**teams["home"]),
            away=TeamRef(**teams["away"]),
            home_goals=goals.get("home", fulltime.get("home")),
            away_goals=goals.get("away", fulltime.get("away")),
        )

    @property
    def kickoff(self) -> datetime:
        return from_timestamp(self.timestamp)

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES


class OddsQuote(BaseModel):
    """Canonical full-match over/under price from one bookmaker."""

    fixture_id: int
    bookmaker: str
    market: Market
    side: Side
    line: float
    odds: float = Field(gt=1.0)
    is_live: bool = False
    captured_at: datetime


class TeamStatsSnapshot(BaseModel):
    """Last-five averages for one team. Overwritten wholesale on refresh."""

    team_id: int
    goals: float = 0.0
    corners: float = 0.0
    cards: float = 0.0
    fouls: float = 0.0
    offsides: float = 0.0
    sample_size: int = Field(default=0, ge=0, le=5)
    fixture_ids: list[int] = Field(default_factory=list)
    computed_at: datetime

    def metric(self, market: str) -> float:
        return float(getattr(self, market))

    def is_usable(self, min_sample_size: int) -> bool:
        return self.sample_size >= min_sample_size
