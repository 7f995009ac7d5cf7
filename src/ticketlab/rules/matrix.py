"""Versioned qualification matrices.

Each version maps a combined (home + away) metric value to at most one pick
per market. Versions never share lookup logic: ``qualify`` dispatches on the
tag and nothing else.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ticketlab.data.schemas import MARKETS, TeamStatsSnapshot


class RulesVersion(str, enum.Enum):
    V1_SHEET = "v1.0-sheet"
    V2_COMBINED_MATRIX = "v2_combined_matrix_v1"


@dataclass(frozen=True)
class Outcome:
    market: str
    side: str
    line: float
    combined: float
    version: RulesVersion


@dataclass(frozen=True)
class Rule:
    low: float
    high: Optional[float]  # None marks the trailing "gte" rule of v2
    line: Optional[float]  # None means the bucket yields no pick


def _over(low: float, high: Optional[float], line: Optional[float]) -> Rule:
    return Rule(low, high, line)


# Half-open buckets: low <= x < high.
V1_RULES: dict[str, Sequence[Rule]] = {
    "goals": (
        _over(1, 2, 0.5), _over(2, 2.7, 1.5), _over(2.7, 4, 2.5), _over(4, 5, 3.5),
        _over(5, 999, 4.5),
    ),
    "corners": (
        _over(7, 8, 7.5), _over(8, 9, 8.5), _over(9, 10, 9.5), _over(10, 11, 10.5),
        _over(11, 12, 11.5), _over(12, 999, 12.5),
    ),
    "cards": (
        _over(0, 2, None), _over(2, 3, 1.5), _over(3, 4, 2.5), _over(4, 5, 3.5),
        _over(5, 6, 4.5), _over(6, 999, 5.5),
    ),
    "fouls": (
        _over(0, 20, None), _over(20, 24, 23.5), _over(24, 28, 27.5), _over(28, 999, 31.5),
    ),
    "offsides": (
        _over(0, 2, None), _over(2, 3, 2.5), _over(3, 4, 3.5), _over(4, 5, 4.5),
        _over(5, 999, 5.5),
    ),
}

_V2_LOW_COUNT = (
    _over(1, 2, None), _over(2, 3, 1.5), _over(3, 4, 2.5), _over(4, 5, 3.5),
    _over(5, 6, 4.5), _over(6, 7, 5.5), _over(7, 8, 5.5), _over(8, None, 5.5),
)

# Inclusive buckets; shared boundaries resolve to the upper bucket.
V2_RULES: dict[str, Sequence[Rule]] = {
    "goals": (
        _over(1, 2, 0.5), _over(2, 2.7, 1.5), _over(2.7, 4, 2.5), _over(4, 5, 3.5),
        _over(5, 6, 4.5), _over(6, None, 4.5),
    ),
    "corners": (
        _over(7, 8, 7.5), _over(8, 9, 7.5), _over(9, 10, 8.5), _over(10, 11, 8.5),
        _over(11, 12, 9.5), _over(12, 13, 9.5), _over(14, 15, 9.5), _over(15, 16, 10.5),
        _over(16, None, 10.5),
    ),
    "offsides": _V2_LOW_COUNT,
    "fouls": (
        _over(19, 20, 16.5), _over(20, 21, 17.5), _over(21, 22, 18.5), _over(22, 23, 19.5),
        _over(23, 24, 20.5), _over(24, 25, 21.5), _over(25, 26, 22.5), _over(26, 27, 23.5),
        _over(27, 28, 24.5), _over(28, 29, 24.5), _over(29, 30, 24.5), _over(30, None, 24.5),
    ),
    "cards": _V2_LOW_COUNT,
}


def _pick_v1(rules: Sequence[Rule], value: float) -> Optional[float]:
    for rule in rules:
        if rule.low <= value < rule.high:
            return rule.line
    return None


def _pick_v2(rules: Sequence[Rule], value: float) -> Optional[float]:
    threshold = max(rule.high for rule in rules if rule.high is not None)
    for rule in reversed(rules):
        if rule.high is None:
            if value >= threshold:
                return rule.line
            continue
        if rule.low <= value <= rule.high:
            return rule.line
    return None


_DISPATCH = {
    RulesVersion.V1_SHEET: (V1_RULES, _pick_v1),
    RulesVersion.V2_COMBINED_MATRIX: (V2_RULES, _pick_v2),
}


def pick_line(version: RulesVersion | str, market: str, value: float) -> Optional[float]:
    """Line of the over pick for ``value`` in ``market``, or None when the bucket has no pick."""

    table, picker = _DISPATCH[RulesVersion(version)]
    rules = table.get(market)
    if not rules or value is None or not math.isfinite(value):
        return None
    return picker(rules, value)


def combine(home: TeamStatsSnapshot, away: TeamStatsSnapshot) -> dict[str, float]:
    return {market: round(home.metric(market) + away.metric(market), 4) for market in MARKETS}


def qualify(version: RulesVersion | str, combined: Mapping[str, Optional[float]]) -> list[Outcome]:
    """Pure lookup of every market's pick for one fixture's combined metrics."""

    version = RulesVersion(version)
    outcomes: list[Outcome] = []
    for market in MARKETS:
        value = combined.get(market)
        if value is None:
            continue
        line = pick_line(version, market, value)
        if line is not None:
            outcomes.append(Outcome(market=market, side="over", line=line, combined=value, version=version))
    return outcomes
