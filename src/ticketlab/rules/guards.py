"""Odds band and suspicious-odds guard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ticketlab.config import Settings, get_settings

logger = logging.getLogger(__name__)

LINE_TOLERANCE = 0.01


@dataclass(frozen=True)
class PriceCeiling:
    market: str
    line: float
    max_odds: float


# Bookmaker feed errors show up as prices these lines essentially never trade at.
PRICE_CEILINGS: tuple[PriceCeiling, ...] = (
    PriceCeiling("goals", 1.5, 3.8),
    PriceCeiling("goals", 2.5, 5.0),
    PriceCeiling("corners", 8.5, 6.0),
    PriceCeiling("corners", 9.5, 6.0),
    PriceCeiling("corners", 10.5, 6.0),
    PriceCeiling("corners", 11.5, 6.0),
    PriceCeiling("corners", 12.5, 6.0),
    PriceCeiling("cards", 2.5, 4.5),
)


def in_odds_band(odds: float, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return settings.odds_min <= odds <= settings.odds_max


def price_ceiling(market: str, line: float) -> Optional[PriceCeiling]:
    return next(
        (c for c in PRICE_CEILINGS if c.market == market and abs(c.line - line) < LINE_TOLERANCE),
        None,
    )


def suspicious_reason(
    market: str,
    line: float,
    odds: float,
    model_prob: Optional[float] = None,
    settings: Settings | None = None,
) -> Optional[str]:
    """Return why a price looks implausible, or None when it passes."""

    settings = settings or get_settings()
    ceiling = price_ceiling(market, line)
    if ceiling is not None and odds >= ceiling.max_odds:
        return f"{market} over {line} @ {odds:.2f} exceeds ceiling {ceiling.max_odds}"
    if model_prob is not None:
        gap = abs(model_prob - 1.0 / odds)
        if gap > settings.suspicious_probability_gap:
            return f"{market} over {line} @ {odds:.2f} implies {1.0 / odds:.2f} vs model {model_prob:.2f}"
    return None


def is_suspicious(
    market: str,
    line: float,
    odds: float,
    model_prob: Optional[float] = None,
    settings: Settings | None = None,
) -> bool:
    reason = suspicious_reason(market, line, odds, model_prob, settings)
    if reason:
        logger.debug("Suspicious odds dropped: %s", reason)
    return reason is not None
