"""Rate-limited client for the API-Football v3 feed."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from datetime import date
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ticketlab.clock import utcnow
from ticketlab.config import get_api_football_key, get_settings
from ticketlab.errors import BudgetExhausted, ClientFetchError, TransientFetchError

logger = logging.getLogger(__name__)

ENDPOINTS: Dict[str, str] = {
    "fixtures": "/fixtures",
    "fixture": "/fixtures",
    "team_fixtures": "/fixtures",
    "fixture_statistics": "/fixtures/statistics",
    "odds": "/odds",
    "predictions": "/predictions",
}


def _retry_log(retry_state: RetryCallState) -> None:  # pragma: no cover - logging helper
    attempt = retry_state.attempt_number
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("API-Football retry attempt %s due to %s", attempt, exception)


class RateLimiter:
    """Sliding-window limiter capping requests per window across worker threads."""

    def __init__(
        self,
        max_events: int,
        window_seconds: float = 60.0,
        *,
        time_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._timestamps: deque[float] = deque()
        self._time = time_fn or time.monotonic
        self._sleep = sleep_fn or time.sleep
        self._lock = threading.Lock()

    def wait_for_slot(self) -> None:
        if self.max_events <= 0:
            return
        with self._lock:
            now = self._time()
            cutoff = now - self.window_seconds
            while self._timestamps and self._timestamps[0] <= cutoff:
                self._timestamps.popleft()
            if len(self._timestamps) >= self.max_events:
                sleep_time = self.window_seconds - (now - self._timestamps[0])
                if sleep_time > 0:
                    self._sleep(sleep_time)
                self._timestamps.popleft()
            self._timestamps.append(self._time())


class DailyBudget:
    """Per-UTC-day call allowance. Exhaustion raises instead of blocking."""

    def __init__(self, limit: int, *, today_fn: Callable[[], date] | None = None) -> None:
        self.limit = limit
        self._today = today_fn or (lambda: utcnow().date())
        self._day = self._today()
        self._used = 0
        self._lock = threading.Lock()

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(self.limit - self._used, 0)

    def consume(self) -> None:
        with self._lock:
            today = self._today()
            if today != self._day:
                self._day = today
                self._used = 0
            if self._used >= self.limit:
                raise BudgetExhausted(f"Daily API budget of {self.limit} calls exhausted")
            self._used += 1


class ApiFootballClient:
    """Convenient wrapper for the API-Football v3 API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        rate_limiter: RateLimiter | None = None,
        budget: DailyBudget | None = None,
        transport: httpx.BaseTransport | None = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or get_api_football_key()
        self.base_url = (base_url or settings.api_football_base_url).rstrip("/")
        self.rate_limiter = rate_limiter or RateLimiter(settings.max_requests_per_minute)
        self.budget = budget or DailyBudget(settings.daily_call_budget)
        self.max_attempts = max_attempts or settings.fetch_max_attempts
        self.backoff_seconds = (
            settings.fetch_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._calls = itertools.count(1)
        self._client = httpx.Client(
            timeout=settings.fetch_timeout_seconds,
            headers={"x-apisports-key": self.api_key},
            transport=transport,
        )

    def __enter__(self) -> "ApiFootballClient":  # pragma: no cover - context sugar
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.budget.consume()
        self.rate_limiter.wait_for_slot()
        call_no = next(self._calls)
        started = time.monotonic()
        try:
            response = self._client.get(f"{self.base_url}{path}", params=params)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("API-Football call #%d %s failed: %s", call_no, path, exc)
            raise TransientFetchError(f"{path}: {exc}") from exc
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "API-Football call #%d %s status=%s duration=%dms",
            call_no,
            path,
            response.status_code,
            duration_ms,
        )
        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientFetchError(f"{path}: HTTP {status}", status_code=status)
        if status >= 400:
            raise ClientFetchError(f"{path}: HTTP {status}", status_code=status)
        return response.json()

    def fetch(self, entity_type: str, params: Optional[Dict[str, Any]] = None) -> list[Dict[str, Any]]:
        """Fetch one entity type and return the payload's ``response`` list."""

        path = ENDPOINTS.get(entity_type)
        if path is None:
            raise ValueError(f"Unknown entity type '{entity_type}'")
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=30),
            retry=retry_if_exception_type(TransientFetchError),
            after=_retry_log,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                payload = self._request(path, params or {})
        return payload.get("response") or []

    def get_fixtures(self, target_date: date, league_id: Optional[int] = None) -> list[Dict[str, Any]]:
        params: Dict[str, Any] = {"date": target_date.isoformat()}
        if league_id:
            params["league"] = league_id
        return self.fetch("fixtures", params)

    def get_fixture(self, fixture_id: int) -> Optional[Dict[str, Any]]:
        items = self.fetch("fixture", {"id": fixture_id})
        return items[0] if items else None

    def get_team_last_fixtures(self, team_id: int, season: int, last: int = 5) -> list[Dict[str, Any]]:
        return self.fetch("team_fixtures", {"team": team_id, "season": season, "last": last, "status": "FT-AET-PEN"})

    def get_fixture_statistics(self, fixture_id: int) -> list[Dict[str, Any]]:
        return self.fetch("fixture_statistics", {"fixture": fixture_id})

    def get_odds(self, fixture_id: int, live: bool = False) -> list[Dict[str, Any]]:
        params: Dict[str, Any] = {"fixture": fixture_id}
        if live:
            params["live"] = "true"
        return self.fetch("odds", params)

    def get_predictions(self, fixture_id: int) -> list[Dict[str, Any]]:
        return self.fetch("predictions", {"fixture": fixture_id})
