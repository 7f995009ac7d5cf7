"""Odds normalizer tests."""

from __future__ import annotations

from collections import Counter

import pytest

from builders import NOW, odds_payload
from ticketlab.data import normalizer
from ticketlab.errors import UnsupportedMarket


def test_parse_full_match_value() -> None:
    assert normalizer.parse_full_match_value("Over 2.5") == ("over", 2.5)
    assert normalizer.parse_full_match_value(" under 10 ") == ("under", 10.0)
    assert normalizer.parse_full_match_value("Over 1st Half 0.5") is None
    assert normalizer.parse_full_match_value("Home Over 1.5") is None
    assert normalizer.parse_full_match_value("Over 2.5, 3") is None
    assert normalizer.parse_full_match_value(None) is None


def test_market_for_bet_allow_list() -> None:
    assert normalizer.market_for_bet({"id": 5, "name": "Goals Over/Under"}) == "goals"
    assert normalizer.market_for_bet({"id": "45"}) == "corners"
    with pytest.raises(UnsupportedMarket):
        normalizer.market_for_bet({"id": 6, "name": "Goals Over/Under First Half"})
    with pytest.raises(UnsupportedMarket):
        normalizer.market_for_bet({"name": "no id"})


def test_normalize_payload_keeps_full_match_totals_only() -> None:
    payload = odds_payload(
        (
            "Book A",
            [
                (5, "Over 2.5", "1.85"),
                (5, "Under 2.5", "1.95"),
                (5, "Over 1st Half 0.5", "1.40"),
                (45, "Over 9.5", "1.90"),
                (80, "Over 4.5", "1.00"),
                (6, "Over 0.5", "1.30"),
            ],
        ),
        ("Book B", [(5, "Over 2.5", "1.90"), (5, "Over 3.5", "n/a")]),
    )
    counters: Counter[str] = Counter()
    quotes = normalizer.normalize_odds_payload(99, payload, NOW, counters=counters)

    summary = sorted((q.bookmaker, q.market, q.side, q.line, q.odds) for q in quotes)
    assert summary == [
        ("Book A", "corners", "over", 9.5, 1.90),
        ("Book A", "goals", "over", 2.5, 1.85),
        ("Book A", "goals", "under", 2.5, 1.95),
        ("Book B", "goals", "over", 2.5, 1.90),
    ]
    assert all(q.fixture_id == 99 and not q.is_live for q in quotes)
    assert counters["unsupported_bets"] == 1
    assert counters["unsupported_values"] == 1
    assert counters["invalid_odds"] == 2
    assert counters["quotes"] == 4


def test_live_flag_is_carried() -> None:
    payload = odds_payload(("Book A", [(5, "Over 2.5", "2.10")]))
    quotes = normalizer.normalize_odds_payload(1, payload, NOW, is_live=True)
    assert quotes[0].is_live


def test_empty_payload() -> None:
    assert normalizer.normalize_odds_payload(1, [], NOW) == []
