"""Map raw bookmaker odds payloads onto canonical ``OddsQuote`` records."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from datetime import datetime
from typing import Any, Iterable

from ticketlab.data.schemas import OddsQuote
from ticketlab.errors import UnsupportedMarket

logger = logging.getLogger(__name__)

# Official API-Football bet ids for full-match totals, one per market.
OFFICIAL_BET_IDS: dict[int, str] = {
    5: "goals",
    45: "corners",
    80: "cards",
}

_REJECT_TOKENS = ("1st half", "2nd half", "1h", "2h", "home", "away", "asian", "team")
_VALUE_RE = re.compile(r"^(over|under)\s+(\d+(?:\.\d+)?)$")
MIN_VALID_ODDS = 1.01


def market_for_bet(bet: dict[str, Any]) -> str:
    """Return the canonical market for an allow-listed bet or raise ``UnsupportedMarket``."""

    try:
        bet_id = int(bet.get("id"))
    except (TypeError, ValueError):
        raise UnsupportedMarket(f"bet without numeric id: {bet.get('name')!r}") from None
    market = OFFICIAL_BET_IDS.get(bet_id)
    if market is None:
        raise UnsupportedMarket(f"bet id {bet_id} ({bet.get('name')!r}) is not allow-listed")
    return market


def parse_full_match_value(raw: Any) -> tuple[str, float] | None:
    """Parse ``"Over 2.5"`` / ``"Under 9.5"``; anything scoped or derivative yields None."""

    text = str(raw or "").strip().lower()
    if not text or any(token in text for token in _REJECT_TOKENS):
        return None
    match = _VALUE_RE.match(text)
    if not match:
        return None
    line = float(match.group(2))
    if not math.isfinite(line):
        return None
    return match.group(1), line


def normalize_bookmakers(
    fixture_id: int,
    bookmakers: Iterable[dict[str, Any]],
    captured_at: datetime,
    *,
    is_live: bool = False,
    counters: Counter[str] | None = None,
) -> list[OddsQuote]:
    counters = counters if counters is not None else Counter()
    quotes: list[OddsQuote] = []
    for bookmaker in bookmakers:
        name = bookmaker.get("name") or f"Bookmaker {bookmaker.get('id')}"
        for bet in bookmaker.get("bets") or []:
            try:
                market = market_for_bet(bet)
            except UnsupportedMarket:
                counters["unsupported_bets"] += 1
                continue
            for value in bet.get("values") or []:
                parsed = parse_full_match_value(value.get("value"))
                if parsed is None:
                    counters["unsupported_values"] += 1
                    continue
                try:
                    odds = float(value.get("odd"))
                except (TypeError, ValueError):
                    counters["invalid_odds"] += 1
                    continue
                if not math.isfinite(odds) or odds <= MIN_VALID_ODDS:
                    counters["invalid_odds"] += 1
                    continue
                side, line = parsed
                quotes.append(
                    OddsQuote(
                        fixture_id=fixture_id,
                        bookmaker=name,
                        market=market,
                        side=side,
                        line=line,
                        odds=odds,
                        is_live=is_live,
                        captured_at=captured_at,
                    )
                )
    counters["quotes"] += len(quotes)
    return quotes


def normalize_odds_payload(
    fixture_id: int,
    payload: list[dict[str, Any]],
    captured_at: datetime,
    *,
    is_live: bool = False,
    counters: Counter[str] | None = None,
) -> list[OddsQuote]:
    """Flatten an ``/odds`` response list into canonical quotes for ``fixture_id``."""

    bookmakers: list[dict[str, Any]] = []
    for item in payload or []:
        bookmakers.extend(item.get("bookmakers") or [])
    quotes = normalize_bookmakers(
        fixture_id, bookmakers, captured_at, is_live=is_live, counters=counters
    )
    logger.debug("Fixture %s: %d quotes from %d bookmakers", fixture_id, len(quotes), len(bookmakers))
    return quotes
