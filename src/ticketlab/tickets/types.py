"""Dataclasses for ticket legs and generated tickets."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass
class TicketLeg:
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

    @property
    def leg_id(self) -> str:
        return f"{self.fixture_id}-{self.market}-{self.side}-{self.line:g}"

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["utc_kickoff"] = self.utc_kickoff.isoformat()
        data["leg_id"] = self.leg_id
        return data


@dataclass
class GeneratedTicket:
    mode: str
    legs: List[TicketLeg]
    total_odds: float
    estimated_win_prob: float
    ticket_hash: str
    rules_version: str
    generated_at: datetime
    pool_size: int = 0
    seed: Optional[int] = None
    is_different: Optional[bool] = None
    target_hit: Optional[bool] = None
    diagnostics: dict[str, Any] = field(default_factory=dict)
