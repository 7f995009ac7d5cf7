"""Pydantic schemas for the TicketLab API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ticketlab.selections.store import MAX_LIMIT, SelectionQuery
from ticketlab.tickets.composer import MAX_LEGS, OptimizeRequest, ShuffleRequest
from ticketlab.tickets.types import GeneratedTicket


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SelectionQueryRequest(CamelModel):
    date: date
    market: str
    side: Literal["over", "under"] = "over"
    line: float | None = None
    min_odds: float = Field(default=1.25, alias="minOdds")
    country_code: str | None = Field(default=None, alias="countryCode")
    league_ids: list[int] = Field(default_factory=list, alias="leagueIds")
    live: bool = False
    show_all_odds: bool = Field(default=False, alias="showAllOdds")
    limit: int = Field(default=50, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)

    def to_query(self) -> SelectionQuery:
        return SelectionQuery(
            date=self.date,
            market=self.market,
            side=self.side,
            line=self.line,
            min_odds=self.min_odds,
            country_code=self.country_code,
            league_ids=list(self.league_ids),
            live=self.live,
            show_all_odds=self.show_all_odds,
            limit=self.limit,
            offset=self.offset,
        )


class SelectionWindow(BaseModel):
    start: datetime
    end: datetime


class SelectionResponse(BaseModel):
    selections: list[dict[str, Any]]
    count: int
    total_qualified: int
    window: SelectionWindow
    debug: dict[str, Any]
    reasons: list[str] = Field(default_factory=list)


class OptimizeTicketRequest(CamelModel):
    target_min: float = Field(alias="targetMin")
    target_max: float = Field(alias="targetMax")
    min_legs: int = Field(default=3, ge=1, le=MAX_LEGS, alias="minLegs")
    max_legs: int = Field(default=8, ge=1, le=MAX_LEGS, alias="maxLegs")
    include_markets: list[str] = Field(default_factory=list, alias="includeMarkets")
    exclude_markets: list[str] = Field(default_factory=list, alias="excludeMarkets")
    risk: str = "standard"

    def to_request(self) -> OptimizeRequest:
        return OptimizeRequest(
            target_min=self.target_min,
            target_max=self.target_max,
            min_legs=self.min_legs,
            max_legs=self.max_legs,
            include_markets=list(self.include_markets),
            exclude_markets=list(self.exclude_markets),
            risk=self.risk,
        )


class ShuffleTicketRequest(CamelModel):
    target_legs: int = Field(ge=1, le=MAX_LEGS, alias="targetLegs")
    locked_leg_ids: list[str] = Field(default_factory=list, alias="lockedLegIds")
    min_odds: float | None = Field(default=None, alias="minOdds")
    max_odds: float | None = Field(default=None, alias="maxOdds")
    include_markets: list[str] = Field(default_factory=list, alias="includeMarkets")
    previous_ticket_hash: str | None = Field(default=None, alias="previousTicketHash")
    seed: int | None = Field(default=None, ge=0)

    def to_request(self) -> ShuffleRequest:
        return ShuffleRequest(
            target_legs=self.target_legs,
            locked_leg_ids=list(self.locked_leg_ids),
            min_odds=self.min_odds,
            max_odds=self.max_odds,
            include_markets=list(self.include_markets),
            previous_ticket_hash=self.previous_ticket_hash,
            seed=self.seed,
        )


class TicketLegOut(BaseModel):
    leg_id: str
    fixture_id: int
    league_id: int
    utc_kickoff: datetime
    market: str
    side: str
    line: float
    bookmaker: str
    odds: float
    model_prob: float
    edge_pct: float


class TicketResponse(BaseModel):
    mode: str
    legs: list[TicketLegOut]
    total_odds: float
    estimated_win_prob: float
    pool_size: int
    generated_at: datetime
    rules_version: str
    ticket_hash: str
    target_hit: bool | None = None
    seed: int | None = None
    is_different: bool | None = None
    diagnostics: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_ticket(cls, ticket: GeneratedTicket) -> "TicketResponse":
        return cls(
            mode=ticket.mode,
            legs=[TicketLegOut(**leg.as_dict()) for leg in ticket.legs],
            total_odds=ticket.total_odds,
            estimated_win_prob=ticket.estimated_win_prob,
            pool_size=ticket.pool_size,
            generated_at=ticket.generated_at,
            rules_version=ticket.rules_version,
            ticket_hash=ticket.ticket_hash,
            target_hit=ticket.target_hit,
            seed=ticket.seed,
            is_different=ticket.is_different,
            diagnostics=ticket.diagnostics,
        )


class JobTriggerRequest(BaseModel):
    window_hours: int | None = Field(default=None, ge=1, le=24 * 14)
    force: bool = False
    deadline_seconds: float | None = Field(default=None, gt=0)


class JobReportResponse(BaseModel):
    job_name: str
    status: str
    scanned: int = 0
    upserted: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    partial: bool = False
    details: dict[str, Any] = Field(default_factory=dict)
