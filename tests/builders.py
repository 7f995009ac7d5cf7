"""Payload and domain-object builders shared by the tests."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from ticketlab.data.schemas import TeamStatsSnapshot
from ticketlab.errors import TicketLabError
from ticketlab.rules.qualifier import Candidate

NOW = datetime(2025, 3, 1, 12, 0)


class MutableClock:
    """Callable ``now_fn`` that tests can move forward."""

    def __init__(self, start: datetime = NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


def fixture_item(
    fixture_id: int,
    kickoff: datetime,
    home_id: int,
    away_id: int,
    *,
    status: str = "NS",
    home_goals: int | None = None,
    away_goals: int | None = None,
    league_id: int = 39,
    country: str = "England",
) -> dict[str, Any]:
    return {
        "fixture": {
            "id": fixture_id,
            "timestamp": int(kickoff.replace(tzinfo=timezone.utc).timestamp()),
            "status": {"short": status},
        },
        "league": {"id": league_id, "country": country, "season": kickoff.year},
        "teams": {
            "home": {"id": home_id, "name": f"Team {home_id}"},
            "away": {"id": away_id, "name": f"Team {away_id}"},
        },
        "goals": {"home": home_goals, "away": away_goals},
    }


def history(team_id: int, goals: list[int], *, start_id: int = 1000) -> list[dict[str, Any]]:
    """Finished home fixtures for ``team_id``, most recent first."""

    items = []
    for offset, scored in enumerate(goals):
        kickoff = NOW - timedelta(days=7 * (offset + 1))
        items.append(
            fixture_item(
                start_id + team_id * 10 + offset,
                kickoff,
                team_id,
                999,
                status="FT",
                home_goals=scored,
                away_goals=0,
            )
        )
    return items


def statistics_item(team_id: int, **values: Any) -> dict[str, Any]:
    names = {
        "corners": "Corner Kicks",
        "fouls": "Fouls",
        "offsides": "Offsides",
        "yellow": "Yellow Cards",
        "red": "Red Cards",
    }
    return {
        "team": {"id": team_id},
        "statistics": [{"type": names[key], "value": value} for key, value in values.items()],
    }


def odds_payload(*bookmakers: tuple[str, list[tuple[int, str, str]]]) -> list[dict[str, Any]]:
    """``odds_payload(("Book A", [(5, "Over 2.5", "1.85")]))`` -> raw ``/odds`` response list."""

    books = []
    for index, (name, values) in enumerate(bookmakers, start=1):
        bets: dict[int, list[dict[str, str]]] = {}
        for bet_id, label, odd in values:
            bets.setdefault(bet_id, []).append({"value": label, "odd": odd})
        books.append(
            {
                "id": index,
                "name": name,
                "bets": [{"id": bet_id, "name": f"Bet {bet_id}", "values": vals} for bet_id, vals in bets.items()],
            }
        )
    return [{"fixture": {}, "bookmakers": books}]


def snapshot(team_id: int, *, sample_size: int = 5, **metrics: float) -> TeamStatsSnapshot:
    return TeamStatsSnapshot(team_id=team_id, sample_size=sample_size, computed_at=NOW, **metrics)


def candidate(
    fixture_id: int,
    odds: float,
    *,
    market: str = "goals",
    side: str = "over",
    line: float = 2.5,
    bookmaker: str = "Book A",
    edge: float = 5.0,
    model_prob: float = 0.6,
    kickoff: datetime | None = None,
    league_id: int = 39,
    country_code: str | None = "England",
    rules_version: str = "v2_combined_matrix_v1",
) -> Candidate:
    return Candidate(
        fixture_id=fixture_id,
        league_id=league_id,
        country_code=country_code,
        utc_kickoff=kickoff or NOW + timedelta(days=1),
        market=market,
        side=side,
        line=line,
        bookmaker=bookmaker,
        odds=odds,
        model_prob=model_prob,
        edge_pct=edge,
        sample_size=5,
        rules_version=rules_version,
        computed_at=NOW,
    )


class FakeFootballClient:
    """In-memory stand-in for ``ApiFootballClient``."""

    def __init__(
        self,
        *,
        fixtures: dict[str, list[dict[str, Any]]] | None = None,
        team_history: dict[int, list[dict[str, Any]]] | None = None,
        statistics: dict[int, list[dict[str, Any]]] | None = None,
        odds: dict[int, list[dict[str, Any]]] | None = None,
        live_odds: dict[int, list[dict[str, Any]]] | None = None,
        results: dict[int, dict[str, Any]] | None = None,
    ) -> None:
        self.fixtures = fixtures or {}
        self.team_history = team_history or {}
        self.statistics = statistics or {}
        self.odds = odds or {}
        self.live_odds = live_odds or {}
        self.results = results or {}
        self.failures: dict[tuple[str, Any], TicketLabError] = {}
        self.calls: Counter[str] = Counter()
        self.base_url = "fake://api-football"

    def _call(self, name: str, key: Any) -> None:
        self.calls[name] += 1
        error = self.failures.get((name, key)) or self.failures.get((name, "*"))
        if error is not None:
            raise error

    def get_fixtures(self, target_date, league_id=None):
        self._call("fixtures", target_date.isoformat())
        return list(self.fixtures.get(target_date.isoformat(), []))

    def get_fixture(self, fixture_id):
        self._call("fixture", fixture_id)
        return self.results.get(fixture_id)

    def get_team_last_fixtures(self, team_id, season, last=5):
        self._call("team_fixtures", team_id)
        return list(self.team_history.get(team_id, []))[:last]

    def get_fixture_statistics(self, fixture_id):
        self._call("fixture_statistics", fixture_id)
        return list(self.statistics.get(fixture_id, []))

    def get_odds(self, fixture_id, live=False):
        self._call("live_odds" if live else "odds", fixture_id)
        return list((self.live_odds if live else self.odds).get(fixture_id, []))

    def get_predictions(self, fixture_id):
        self._call("predictions", fixture_id)
        return [{"predictions": {"winner": None}}]

    def close(self) -> None:
        pass
