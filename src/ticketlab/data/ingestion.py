"""Data ingestion utilities for TicketLab.

Every provider read goes through the ``CacheStore`` so that repeated pipeline
runs inside a TTL window cost no API calls.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ticketlab.data.api_football import ApiFootballClient
from ticketlab.data.cache import CacheEntity, CacheStore
from ticketlab.data.normalizer import normalize_odds_payload
from ticketlab.data.schemas import FixturePayload, OddsQuote
from ticketlab.db.database import get_session
from ticketlab.db.models import Fixture

logger = logging.getLogger(__name__)

NOT_STARTED_STATUSES = frozenset({"NS", "TBD", "PST"})


@dataclass
class OddsSnapshot:
    fixture_id: int
    quotes: list[OddsQuote] = field(default_factory=list)
    is_stale: bool = False
    fetched_at: Optional[datetime] = None
    counters: Counter[str] = field(default_factory=Counter)


def _apply_payload(fixture: Fixture, payload: FixturePayload) -> bool:
    """Copy provider data onto ``fixture``; returns True when anything changed.

    Once a match has started only the status and score may move.
    """

    started = fixture.status is not None and fixture.status not in NOT_STARTED_STATUSES
    values: dict[str, Any] = {
        "status": payload.status,
        "home_goals": payload.home_goals,
        "away_goals": payload.away_goals,
    }
    if not started:
        values.update(
            league_id=payload.league_id,
            country_code=payload.country,
            season=payload.season,
            home_team_id=payload.home.id,
            away_team_id=payload.away.id,
            home_team_name=payload.home.name,
            away_team_name=payload.away.name,
            kickoff=payload.kickoff,
        )
    changed = False
    for name, value in values.items():
        if getattr(fixture, name) != value:
            setattr(fixture, name, value)
            changed = True
    return changed


def upsert_fixture(session: Session, payload: FixturePayload) -> str:
    fixture = session.get(Fixture, payload.id)
    if fixture is None:
        fixture = Fixture(id=payload.id, status=None)
        _apply_payload(fixture, payload)
        session.add(fixture)
        return "inserted"
    if fixture.status != payload.status:
        logger.debug("Fixture %s status %s -> %s", payload.id, fixture.status, payload.status)
    return "updated" if _apply_payload(fixture, payload) else "unchanged"


def fetch_fixtures(
    client: ApiFootballClient,
    cache: CacheStore,
    target_date: date,
    league_id: Optional[int] = None,
    *,
    force: bool = False,
) -> list[dict[str, Any]]:
    """Raw ``/fixtures`` items for one day, served from cache inside the TTL."""

    key = f"{target_date.isoformat()}:{league_id or 'all'}"
    lookup = cache.get_or_fetch(
        CacheEntity.FIXTURES, key, lambda: client.get_fixtures(target_date, league_id), force=force
    )
    return lookup.value or []


def store_fixtures(
    items: Iterable[dict[str, Any]], *, session_factory: sessionmaker | None = None
) -> Counter[str]:
    """Upsert raw fixture items; returns inserted/updated/unchanged/malformed counts."""

    summary: Counter[str] = Counter()
    with get_session(session_factory) as session:
        for item in items:
            try:
                payload = FixturePayload.from_api(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed fixture payload: %s", exc)
                summary["malformed"] += 1
                continue
            summary[upsert_fixture(session, payload)] += 1
    return summary


def fixtures_between(
    start: datetime,
    end: datetime,
    league_ids: Iterable[int] | None = None,
    *,
    statuses: Iterable[str] | None = None,
    session_factory: sessionmaker | None = None,
) -> list[Fixture]:
    """Load fixtures kicking off in ``[start, end)``, ordered by kickoff."""

    stmt = select(Fixture).where(Fixture.kickoff >= start, Fixture.kickoff < end)
    league_ids = list(league_ids or [])
    if league_ids:
        stmt = stmt.where(Fixture.league_id.in_(league_ids))
    if statuses is not None:
        stmt = stmt.where(Fixture.status.in_(list(statuses)))
    with get_session(session_factory) as session:
        return list(session.scalars(stmt.order_by(Fixture.kickoff, Fixture.id)))


def load_odds(
    client: ApiFootballClient,
    cache: CacheStore,
    fixture_id: int,
    *,
    live: bool = False,
    force: bool = False,
) -> OddsSnapshot:
    """Return normalized odds for one fixture.

    Prematch odds are cached; live odds always hit the provider.
    """

    if live:
        payload = client.get_odds(fixture_id, live=True)
        fetched_at = cache.now()
        is_stale = False
    else:
        lookup = cache.get_or_fetch(
            CacheEntity.ODDS, fixture_id, lambda: client.get_odds(fixture_id), force=force
        )
        payload = lookup.value or []
        fetched_at = lookup.fetched_at or cache.now()
        is_stale = lookup.is_stale
    snapshot = OddsSnapshot(fixture_id=fixture_id, is_stale=is_stale, fetched_at=fetched_at)
    snapshot.quotes = normalize_odds_payload(
        fixture_id, payload, fetched_at, is_live=live, counters=snapshot.counters
    )
    if is_stale:
        logger.info("Odds for fixture %s are stale (fetched %s)", fixture_id, fetched_at)
    return snapshot


def cached_odds(cache: CacheStore, fixture_id: int) -> OddsSnapshot | None:
    """Normalized prematch odds from the cache only; ``None`` when never fetched."""

    lookup = cache.get(CacheEntity.ODDS, fixture_id)
    if not lookup.hit:
        return None
    snapshot = OddsSnapshot(fixture_id=fixture_id, is_stale=lookup.is_stale, fetched_at=lookup.fetched_at)
    snapshot.quotes = normalize_odds_payload(
        fixture_id, lookup.value, lookup.fetched_at, counters=snapshot.counters
    )
    return snapshot


def load_predictions(
    client: ApiFootballClient, cache: CacheStore, fixture_id: int, *, force: bool = False
) -> dict[str, Any] | None:
    """1X2 prediction block for a fixture, if the provider has one."""

    lookup = cache.get_or_fetch(
        CacheEntity.PREDICTIONS, fixture_id, lambda: client.get_predictions(fixture_id), force=force
    )
    items = lookup.value or []
    return items[0] if items else None


def load_fixture_statistics(
    client: ApiFootballClient, cache: CacheStore, fixture_id: int
) -> list[dict[str, Any]]:
    """Per-team statistics of a finished fixture; kept permanently once fetched."""

    lookup = cache.get_or_fetch(
        CacheEntity.RESULTS, f"stats:{fixture_id}", lambda: client.get_fixture_statistics(fixture_id)
    )
    return lookup.value or []


def load_fixture_result(
    client: ApiFootballClient, cache: CacheStore, fixture_id: int
) -> FixturePayload | None:
    """Final result of a fixture. Only finished matches are cached."""

    lookup = cache.get(CacheEntity.RESULTS, f"fixture:{fixture_id}")
    if lookup.hit:
        return FixturePayload.from_api(lookup.value)
    item = client.get_fixture(fixture_id)
    if item is None:
        return None
    payload = FixturePayload.from_api(item)
    if payload.is_finished:
        cache.put(CacheEntity.RESULTS, f"fixture:{fixture_id}", item)
    return payload
