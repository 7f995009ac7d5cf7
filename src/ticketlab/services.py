"""Process-wide component wiring.

One ``Services`` instance is built per process and handed to jobs, the
scheduler and the HTTP layer, so every component shares the same cache store,
lock table and rate limiter.
"""

from __future__ import annotations

import logging
import threading
from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from ticketlab.clock import NowFn, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.data.api_football import ApiFootballClient
from ticketlab.data.cache import CacheStore
from ticketlab.rules.qualifier import RulesQualifier
from ticketlab.scheduling.locks import JobLock
from ticketlab.selections.store import SelectionStore
from ticketlab.stats.aggregator import StatsAggregator
from ticketlab.tickets.composer import TicketComposer
from ticketlab.tickets.service import TicketService

logger = logging.getLogger(__name__)


class Services:
    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: sessionmaker | None = None,
        *,
        client: ApiFootballClient | None = None,
        now_fn: NowFn | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.now = now_fn or utcnow
        self.cache = CacheStore(session_factory, self.settings, now_fn=self.now)
        self.lock = JobLock(session_factory, now_fn=self.now)
        self.qualifier = RulesQualifier(self.settings, now_fn=self.now)
        self.store = SelectionStore(session_factory, self.settings, now_fn=self.now)
        self.composer = TicketComposer(self.settings, now_fn=self.now)
        self.tickets = TicketService(self.store, self.composer, session_factory)
        self._client = client
        self._aggregator: StatsAggregator | None = None
        self._guard = threading.Lock()

    @property
    def client(self) -> ApiFootballClient:
        """The shared API client, created on first use so read-only paths need no key."""

        with self._guard:
            if self._client is None:
                self._client = ApiFootballClient()
                logger.info("API-Football client ready (%s)", self._client.base_url)
            return self._client

    @property
    def aggregator(self) -> StatsAggregator:
        client = self.client
        with self._guard:
            if self._aggregator is None:
                self._aggregator = StatsAggregator(client, self.cache, self.settings, now_fn=self.now)
            return self._aggregator

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


@lru_cache(maxsize=1)
def get_services() -> Services:
    return Services()
