"""HTTP API tests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from builders import NOW, FakeFootballClient, candidate
from ticketlab.api.server import app
from ticketlab.services import Services, get_services

API_KEY = "secret-key"


@pytest.fixture
def services(session_factory, settings, clock) -> Services:
    services = Services(settings, session_factory, client=FakeFootballClient(), now_fn=clock)
    services.store.replace_window(
        NOW,
        NOW + timedelta(days=7),
        [candidate(i, 1.8, edge=float(i)) for i in range(1, 9)]
        + [candidate(1, 1.95, bookmaker="Book B")],
    )
    return services


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setenv("TICKETLAB_API_KEY", API_KEY)
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_version_reports_rules(client) -> None:
    body = client.get("/version").json()
    assert body["name"] == "ticketlab-soccer"
    assert body["rules_version"] == "v2_combined_matrix_v1"


def test_selection_query(client) -> None:
    response = client.post(
        "/selections/query",
        json={"date": "2025-03-01", "market": "goals", "line": 2.5, "minOdds": 1.5, "showAllOdds": True, "limit": 5},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 5
    assert body["total_qualified"] == 9
    assert body["window"]["start"].startswith("2025-03-01T00:00:00")
    assert body["debug"]["stages"]["deduped"] == 9
    assert body["selections"][0]["odds"] == 1.95


def test_selection_query_empty_explains(client) -> None:
    body = client.post(
        "/selections/query", json={"date": "2025-03-01", "market": "corners", "side": "over"}
    ).json()
    assert body["count"] == 0
    assert any(reason.startswith("market_match=0") for reason in body["reasons"])


def test_validation_errors_are_422(client) -> None:
    response = client.post("/selections/query", json={"date": "2025-03-01", "market": "throw-ins"})
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    assert "market" in response.json()["reason"]
    assert client.post("/selections/query", json={"date": "2025-03-01", "market": "goals", "limit": 500}).status_code == 422


def test_optimize_ticket(client) -> None:
    response = client.post(
        "/tickets/optimize",
        json={"targetMin": 5, "targetMax": 7, "minLegs": 3, "maxLegs": 5, "includeMarkets": ["goals"]},
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["legs"]) == 3
    assert 5 <= body["total_odds"] <= 7
    assert body["pool_size"] == 8
    assert body["target_hit"] is True


def test_optimize_rejects_bad_range(client) -> None:
    response = client.post("/tickets/optimize", json={"targetMin": 7, "targetMax": 5})
    assert response.status_code == 422
    assert "targetMax" in response.json()["reason"]


def test_shuffle_ticket(client) -> None:
    payload = {"targetLegs": 4, "lockedLegIds": ["3-goals-over-2.5"], "seed": 99}
    first = client.post("/tickets/shuffle", json=payload).json()
    assert first["legs"][0]["leg_id"] == "3-goals-over-2.5"
    assert first["seed"] == 99
    assert first["is_different"] is True
    second = client.post("/tickets/shuffle", json={**payload, "previousTicketHash": first["ticket_hash"]}).json()
    assert second["ticket_hash"] == first["ticket_hash"]
    assert second["is_different"] is False


def test_job_trigger_requires_key(client) -> None:
    assert client.post("/jobs/selections-refresh").status_code == 401
    assert client.post("/jobs/selections-refresh", headers={"X-API-Key": "wrong"}).status_code == 401


def test_job_trigger_inline(client) -> None:
    response = client.post(
        "/jobs/selections-refresh?wait=true",
        headers={"X-API-Key": API_KEY},
        json={"window_hours": 24},
    )
    assert response.status_code == 200
    body = response.json()
    for counter in ("scanned", "upserted", "skipped", "failed", "duration_ms"):
        assert counter in body
    assert body["status"] == "ok"


def test_job_trigger_background_then_last_run(client) -> None:
    headers = {"X-API-Key": API_KEY}
    response = client.post("/jobs/selections-refresh", headers=headers)
    assert response.json() == {"status": "accepted", "job_name": "selections-refresh"}
    last = client.get("/jobs/selections-refresh/last", headers=headers)
    assert last.status_code == 200
    assert last.json()["status"] == "ok"


def test_unknown_job_is_404(client) -> None:
    headers = {"X-API-Key": API_KEY}
    assert client.post("/jobs/make-coffee", headers=headers).status_code == 404
    assert client.get("/jobs/odds-backfill/last", headers=headers).status_code == 404
