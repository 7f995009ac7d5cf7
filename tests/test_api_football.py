"""API-Football client tests."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from ticketlab.data import api_football
from ticketlab.errors import BudgetExhausted, ClientFetchError, TransientFetchError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self.now += duration


def test_rate_limiter_waits_when_limit_exceeded() -> None:
    clock = FakeClock()
    limiter = api_football.RateLimiter(
        max_events=2,
        window_seconds=60,
        time_fn=clock.time,
        sleep_fn=clock.sleep,
    )
    limiter.wait_for_slot()
    clock.now += 10
    limiter.wait_for_slot()
    clock.now += 10
    limiter.wait_for_slot()
    assert pytest.approx(clock.sleeps[-1], rel=0.01) == 40.0


def test_rate_limiter_disabled_with_zero_limit() -> None:
    clock = FakeClock()
    limiter = api_football.RateLimiter(max_events=0, time_fn=clock.time, sleep_fn=clock.sleep)
    for _ in range(10):
        limiter.wait_for_slot()
    assert clock.sleeps == []


def test_daily_budget_raises_and_resets_at_midnight() -> None:
    today = {"value": date(2025, 3, 1)}
    budget = api_football.DailyBudget(2, today_fn=lambda: today["value"])
    budget.consume()
    budget.consume()
    assert budget.remaining == 0
    with pytest.raises(BudgetExhausted):
        budget.consume()
    today["value"] = date(2025, 3, 2)
    budget.consume()
    assert budget.used == 1


def _client(handler, *, budget: int = 100) -> api_football.ApiFootballClient:
    return api_football.ApiFootballClient(
        api_key="test-key",
        base_url="https://api.test",
        rate_limiter=api_football.RateLimiter(0),
        budget=api_football.DailyBudget(budget),
        transport=httpx.MockTransport(handler),
        max_attempts=3,
        backoff_seconds=0,
    )


def test_fetch_retries_transient_errors() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"response": [{"fixture": {"id": 1}}]})

    client = _client(handler)
    items = client.fetch("odds", {"fixture": 1})
    assert items == [{"fixture": {"id": 1}}]
    assert len(seen) == 2
    assert seen[-1].headers["x-apisports-key"] == "test-key"
    assert seen[-1].url.path == "/odds"
    assert client.budget.used == 2


def test_fetch_gives_up_after_max_attempts() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(429)

    with pytest.raises(TransientFetchError):
        _client(handler).fetch("fixtures", {"date": "2025-03-01"})
    assert calls["n"] == 3


def test_client_errors_are_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(404)

    with pytest.raises(ClientFetchError) as excinfo:
        _client(handler).get_fixture_statistics(7)
    assert excinfo.value.status_code == 404
    assert calls["n"] == 1


def test_budget_exhaustion_stops_before_request() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"response": []})

    client = _client(handler, budget=1)
    client.get_predictions(1)
    with pytest.raises(BudgetExhausted):
        client.get_predictions(2)
    assert calls["n"] == 1


def test_get_fixture_returns_first_item_or_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["id"] == "1":
            return httpx.Response(200, json={"response": [{"fixture": {"id": 1}}]})
        return httpx.Response(200, json={"response": []})

    client = _client(handler)
    assert client.get_fixture(1) == {"fixture": {"id": 1}}
    assert client.get_fixture(2) is None


def test_unknown_entity_type_rejected() -> None:
    client = _client(lambda request: httpx.Response(200, json={"response": []}))
    with pytest.raises(ValueError):
        client.fetch("standings")
