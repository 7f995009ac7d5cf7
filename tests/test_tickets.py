"""Ticket composer tests."""

from __future__ import annotations

from datetime import timedelta

import numpy as np
import pytest

from builders import NOW, candidate
from ticketlab.db.database import get_session
from ticketlab.db.models import GeneratedTicketRecord
from ticketlab.errors import ValidationError
from ticketlab.selections.store import SelectionStore
from ticketlab.tickets import composer as tc
from ticketlab.tickets.service import TicketService


def _pool(count: int, odds: float = 1.8, **kwargs):
    return [candidate(i, odds, edge=float(i), **kwargs) for i in range(1, count + 1)]


def _composer(settings, clock) -> tc.TicketComposer:
    return tc.TicketComposer(settings, now_fn=clock)


def test_optimizer_hits_target_range(settings, clock) -> None:
    request = tc.OptimizeRequest(target_min=5.0, target_max=7.0, min_legs=3, max_legs=5)
    ticket = _composer(settings, clock).optimize(_pool(10), request)
    assert ticket.target_hit
    assert len(ticket.legs) == 3
    assert 5.0 <= ticket.total_odds <= 7.0
    assert ticket.total_odds == pytest.approx(1.8**3, abs=0.01)
    assert ticket.estimated_win_prob == pytest.approx(0.6**3)
    assert len({leg.fixture_id for leg in ticket.legs}) == 3
    assert ticket.generated_at == NOW
    assert ticket.pool_size == 10


def test_optimizer_returns_closest_ticket_when_target_unreachable(settings, clock) -> None:
    request = tc.OptimizeRequest(target_min=18, target_max=20, min_legs=5, max_legs=15)
    ticket = _composer(settings, clock).optimize(_pool(5, odds=1.5), request)
    assert not ticket.target_hit
    assert len(ticket.legs) == 5
    assert ticket.total_odds == pytest.approx(1.5**5, abs=0.01)
    assert ticket.pool_size == 5
    assert any("closest total odds" in reason for reason in ticket.diagnostics["reasons"])


def test_optimizer_fills_min_legs_when_product_cap_blocks(settings, clock) -> None:
    request = tc.OptimizeRequest(target_min=18, target_max=20, min_legs=5, max_legs=15, risk="risky")
    ticket = _composer(settings, clock).optimize(_pool(9, odds=4.5), request)
    assert not ticket.target_hit
    assert len(ticket.legs) == 5
    assert len({leg.fixture_id for leg in ticket.legs}) == 5
    assert any("closest total odds" in reason for reason in ticket.diagnostics["reasons"])


def test_optimizer_returns_single_leg_when_every_price_overshoots(settings, clock) -> None:
    request = tc.OptimizeRequest(target_min=2, target_max=3, min_legs=1, risk="risky")
    ticket = _composer(settings, clock).optimize(_pool(5, odds=4.5), request)
    assert not ticket.target_hit
    assert len(ticket.legs) == 1
    assert ticket.total_odds == pytest.approx(4.5)
    assert ticket.diagnostics["reasons"]


def test_optimizer_reports_empty_pool(settings, clock) -> None:
    request = tc.OptimizeRequest(target_min=3, target_max=4)
    ticket = _composer(settings, clock).optimize([], request)
    assert ticket.legs == []
    assert ticket.pool_size == 0
    assert not ticket.target_hit
    assert ticket.diagnostics["reasons"]


def test_optimizer_one_leg_per_fixture_and_market_filter(settings, clock) -> None:
    pool = _pool(4) + [candidate(i, 1.9, market="corners", line=8.5) for i in range(1, 5)]
    request = tc.OptimizeRequest(target_min=10, target_max=12, min_legs=4, max_legs=4, exclude_markets=["goals"])
    ticket = _composer(settings, clock).optimize(pool, request)
    assert {leg.market for leg in ticket.legs} == {"corners"}
    assert len({leg.fixture_id for leg in ticket.legs}) == len(ticket.legs)


def test_risk_profile_limits_pool(settings, clock) -> None:
    pool = _pool(6, odds=1.3) + [candidate(i, 2.4) for i in range(10, 16)]
    request = tc.OptimizeRequest(target_min=2, target_max=3, min_legs=2, max_legs=4, risk="safe")
    ticket = _composer(settings, clock).optimize(pool, request)
    assert all(leg.odds <= 1.8 * 1.5 for leg in ticket.legs)
    assert ticket.diagnostics["risk"] == "safe"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"target_min": 5, "target_max": 4},
        {"target_min": 1.0, "target_max": 4},
        {"target_min": 2, "target_max": 4, "min_legs": 6, "max_legs": 5},
        {"target_min": 2, "target_max": 4, "risk": "yolo"},
        {"target_min": 2, "target_max": 4, "include_markets": ["throw-ins"]},
    ],
)
def test_optimize_request_validation(kwargs) -> None:
    with pytest.raises(ValidationError):
        tc.OptimizeRequest(**kwargs).validate()


def test_shuffle_is_deterministic_for_a_seed(settings, clock) -> None:
    pool = _pool(12)
    request = tc.ShuffleRequest(target_legs=4, seed=1234)
    first = _composer(settings, clock).shuffle(pool, request)
    second = _composer(settings, clock).shuffle(pool, request)
    assert [leg.leg_id for leg in first.legs] == [leg.leg_id for leg in second.legs]
    assert first.ticket_hash == second.ticket_hash
    assert first.seed == 1234
    assert len(first.legs) == 4


def test_shuffle_varies_with_seed(settings, clock) -> None:
    pool = _pool(12)
    hashes = {
        _composer(settings, clock).shuffle(pool, tc.ShuffleRequest(target_legs=4, seed=seed)).ticket_hash
        for seed in range(10)
    }
    assert len(hashes) > 1


def test_shuffle_keeps_locked_legs_and_reports_difference(settings, clock) -> None:
    pool = _pool(12)
    locked = [pool[0], pool[1]]
    request = tc.ShuffleRequest(target_legs=5, locked_leg_ids=[tc.to_leg(c).leg_id for c in locked], seed=7)
    ticket = _composer(settings, clock).shuffle(pool, request, locked)
    assert [leg.fixture_id for leg in ticket.legs[:2]] == [1, 2]
    assert len({leg.fixture_id for leg in ticket.legs}) == 5
    assert ticket.is_different

    again = tc.ShuffleRequest(
        target_legs=5,
        locked_leg_ids=request.locked_leg_ids,
        seed=7,
        previous_ticket_hash=ticket.ticket_hash,
    )
    assert _composer(settings, clock).shuffle(pool, again, locked).is_different is False


def test_shuffle_respects_odds_band(settings, clock) -> None:
    pool = _pool(4, odds=1.5) + [candidate(i, 3.0) for i in range(10, 14)]
    request = tc.ShuffleRequest(target_legs=4, min_odds=2.0, max_odds=3.5, seed=3)
    ticket = _composer(settings, clock).shuffle(pool, request)
    assert all(leg.odds == 3.0 for leg in ticket.legs)


def test_shuffle_short_pool_is_reported(settings, clock) -> None:
    ticket = _composer(settings, clock).shuffle(_pool(2), tc.ShuffleRequest(target_legs=4, seed=1))
    assert len(ticket.legs) == 2
    assert not ticket.target_hit
    assert ticket.diagnostics["reasons"]


def test_shuffle_weights_favour_edge() -> None:
    pool = [candidate(1, 1.8, edge=1.0), candidate(2, 1.8, edge=10.0)]
    weights = tc.shuffle_weights(pool, np.random.default_rng(0))
    assert weights[1] > weights[0]
    assert weights[1] >= tc.EDGE_WEIGHT
    assert (weights <= 1.0).all()


def test_ticket_hash_ignores_leg_order() -> None:
    legs = [tc.to_leg(c) for c in _pool(3)]
    assert tc.ticket_hash(legs) == tc.ticket_hash(list(reversed(legs)))
    assert legs[0].leg_id == "1-goals-over-2.5"


def _service(session_factory, settings, clock) -> TicketService:
    store = SelectionStore(session_factory, settings, now_fn=clock)
    store.replace_window(NOW, NOW + timedelta(days=7), _pool(8))
    return TicketService(store, tc.TicketComposer(settings, now_fn=clock), session_factory)


def test_service_persists_generated_tickets(session_factory, settings, clock) -> None:
    service = _service(session_factory, settings, clock)
    ticket = service.optimize(tc.OptimizeRequest(target_min=5, target_max=7, min_legs=3, max_legs=5))
    assert ticket.target_hit
    assert ticket.diagnostics["pool"]["pool"] == 8
    with get_session(session_factory) as session:
        records = session.query(GeneratedTicketRecord).all()
        assert [(r.mode, r.ticket_hash) for r in records] == [("optimizer", ticket.ticket_hash)]


def test_service_shuffle_resolves_locked_legs(session_factory, settings, clock) -> None:
    service = _service(session_factory, settings, clock)
    ticket = service.shuffle(tc.ShuffleRequest(target_legs=3, locked_leg_ids=["4-goals-over-2.5"], seed=11))
    assert ticket.legs[0].leg_id == "4-goals-over-2.5"
    assert len(ticket.legs) == 3

    with pytest.raises(ValidationError):
        service.shuffle(tc.ShuffleRequest(target_legs=3, locked_leg_ids=["999-goals-over-2.5"]))
