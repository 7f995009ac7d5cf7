"""TTL cache store backing every read path of the pipeline.

One ``CacheStore`` is constructed per process and handed to each component.
Entries are keyed by entity type plus an entity id and carry their own expiry,
so repeated pipeline runs reuse provider payloads instead of spending calls.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import pandas as pd
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from ticketlab.clock import NowFn, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.db.database import dialect_insert, get_session
from ticketlab.db.models import CacheEntry
from ticketlab.errors import TransientFetchError

logger = logging.getLogger(__name__)


class CacheEntity(str, enum.Enum):
    FIXTURES = "fixtures"
    TEAM_STATS = "team_stats"
    ODDS = "odds"
    PREDICTIONS = "predictions"
    RESULTS = "results"


@dataclass(frozen=True)
class CacheLookup:
    value: Any
    is_fresh: bool
    is_stale: bool
    fetched_at: datetime | None

    @property
    def hit(self) -> bool:
        return self.value is not None


MISS = CacheLookup(value=None, is_fresh=False, is_stale=False, fetched_at=None)


class CacheStore:
    """Per-entity TTL cache persisted in ``cache_entries``."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        settings: Settings | None = None,
        *,
        now_fn: NowFn | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self._now = now_fn or utcnow
        self.ttls: dict[CacheEntity, timedelta | None] = {
            CacheEntity.FIXTURES: timedelta(hours=self.settings.fixtures_ttl_hours),
            CacheEntity.TEAM_STATS: timedelta(hours=self.settings.stats_ttl_hours),
            CacheEntity.ODDS: timedelta(hours=self.settings.odds_ttl_hours),
            CacheEntity.PREDICTIONS: timedelta(hours=self.settings.predictions_ttl_hours),
            CacheEntity.RESULTS: None,
        }
        self.stale_after: dict[CacheEntity, timedelta] = {
            CacheEntity.ODDS: timedelta(minutes=self.settings.odds_stale_after_minutes),
        }

    def now(self) -> datetime:
        return self._now()

    def _lookup(self, entity: CacheEntity, entry: CacheEntry) -> CacheLookup:
        now = self._now()
        is_fresh = entry.expires_at is None or entry.expires_at > now
        threshold = self.stale_after.get(entity)
        is_stale = not is_fresh or (threshold is not None and now - entry.fetched_at >= threshold)
        return CacheLookup(
            value=entry.payload,
            is_fresh=is_fresh,
            is_stale=is_stale,
            fetched_at=entry.fetched_at,
        )

    def get(self, entity: CacheEntity, key: str | int) -> CacheLookup:
        with get_session(self.session_factory) as session:
            entry = session.scalars(
                select(CacheEntry).where(
                    CacheEntry.entity_type == entity.value,
                    CacheEntry.cache_key == str(key),
                )
            ).first()
            if entry is None:
                return MISS
            return self._lookup(entity, entry)

    def get_many(self, entity: CacheEntity, keys: list[str | int]) -> dict[str, CacheLookup]:
        if not keys:
            return {}
        with get_session(self.session_factory) as session:
            entries = session.scalars(
                select(CacheEntry).where(
                    CacheEntry.entity_type == entity.value,
                    CacheEntry.cache_key.in_([str(k) for k in keys]),
                )
            )
            return {entry.cache_key: self._lookup(entity, entry) for entry in entries}

    def put(
        self,
        entity: CacheEntity,
        key: str | int,
        value: Any,
        ttl: timedelta | None = None,
    ) -> None:
        now = self._now()
        ttl = ttl if ttl is not None else self.ttls[entity]
        expires_at = now + ttl if ttl is not None else None
        with get_session(self.session_factory) as session:
            stmt = dialect_insert(session, CacheEntry).values(
                entity_type=entity.value,
                cache_key=str(key),
                payload=value,
                fetched_at=now,
                expires_at=expires_at,
            )
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["entity_type", "cache_key"],
                    set_={
                        "payload": stmt.excluded.payload,
                        "fetched_at": stmt.excluded.fetched_at,
                        "expires_at": stmt.excluded.expires_at,
                    },
                )
            )

    def get_or_fetch(
        self,
        entity: CacheEntity,
        key: str | int,
        loader: Callable[[], Any],
        *,
        force: bool = False,
        ttl: timedelta | None = None,
    ) -> CacheLookup:
        """Return a fresh cached value or call ``loader`` and cache its result.

        When the loader fails transiently and an expired value exists, the old
        value is returned with ``is_fresh=False`` so callers can flag it.
        """

        cached = self.get(entity, key)
        if cached.is_fresh and not force:
            return cached
        try:
            value = loader()
        except TransientFetchError:
            if cached.hit:
                logger.warning("Serving expired %s cache for %s after fetch failure", entity.value, key)
                return CacheLookup(cached.value, False, True, cached.fetched_at)
            raise
        self.put(entity, key, value, ttl=ttl)
        return CacheLookup(value=value, is_fresh=True, is_stale=False, fetched_at=self._now())

    def cleanup(self, entity: CacheEntity, older_than: datetime) -> int:
        with get_session(self.session_factory) as session:
            result = session.execute(
                delete(CacheEntry).where(
                    CacheEntry.entity_type == entity.value,
                    CacheEntry.fetched_at < older_than,
                )
            )
            removed = result.rowcount or 0
        logger.info("Removed %d %s cache entries older than %s", removed, entity.value, older_than)
        return removed

    def cleanup_results(self, retention_months: int | None = None) -> int:
        months = retention_months or self.settings.results_retention_months
        cutoff = (pd.Timestamp(self._now()) - pd.DateOffset(months=months)).to_pydatetime()
        return self.cleanup(CacheEntity.RESULTS, cutoff)
