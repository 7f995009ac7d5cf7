"""Ticket construction logic: deterministic optimizer and seeded weighted shuffle."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ticketlab.clock import NowFn, utcnow
from ticketlab.config import Settings, get_settings
from ticketlab.data.schemas import MARKETS
from ticketlab.errors import ValidationError
from ticketlab.rules.qualifier import Candidate
from ticketlab.tickets.types import GeneratedTicket, TicketLeg

logger = logging.getLogger(__name__)

MAX_LEGS = 20
OVERSHOOT = 1.15
EDGE_WEIGHT = 0.65
ODDS_WEIGHT = 0.25
RANDOM_WEIGHT = 0.10


@dataclass(frozen=True)
class RiskProfile:
    name: str
    min_odds: float
    max_odds: float
    preferred_odds: float

    def eligible(self, odds: float, odds_max: float) -> bool:
        return self.min_odds <= odds <= min(self.max_odds * 1.5, odds_max)


RISK_PROFILES: dict[str, RiskProfile] = {
    "safe": RiskProfile("safe", 1.25, 1.80, 1.40),
    "standard": RiskProfile("standard", 1.40, 2.60, 1.80),
    "risky": RiskProfile("risky", 1.80, 5.00, 2.60),
}


def to_leg(candidate: Candidate) -> TicketLeg:
    return TicketLeg(
        fixture_id=candidate.fixture_id,
        league_id=candidate.league_id,
        utc_kickoff=candidate.utc_kickoff,
        market=candidate.market,
        side=candidate.side,
        line=candidate.line,
        bookmaker=candidate.bookmaker,
        odds=candidate.odds,
        model_prob=candidate.model_prob,
        edge_pct=candidate.edge_pct,
    )


def combine_odds(legs: Iterable[TicketLeg]) -> float:
    decimal = 1.0
    for leg in legs:
        decimal *= leg.odds
    return decimal


def win_probability(legs: Iterable[TicketLeg]) -> float:
    """Product of leg probabilities; legs are treated as independent."""

    prob = 1.0
    for leg in legs:
        prob *= leg.model_prob
    return prob


def ticket_hash(legs: Iterable[TicketLeg]) -> str:
    joined = "|".join(sorted(leg.leg_id for leg in legs))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _check_markets(markets: Sequence[str], label: str) -> None:
    unknown = sorted(set(markets) - set(MARKETS))
    if unknown:
        raise ValidationError(f"{label} contains unknown markets: {', '.join(unknown)}")


@dataclass
class OptimizeRequest:
    target_min: float
    target_max: float
    min_legs: int = 3
    max_legs: int = 8
    include_markets: list[str] = field(default_factory=lambda: list(MARKETS))
    exclude_markets: list[str] = field(default_factory=list)
    risk: str = "standard"

    def validate(self) -> None:
        if self.target_min <= 1.0:
            raise ValidationError("targetMin must be greater than 1.0")
        if self.target_max < self.target_min:
            raise ValidationError("targetMax must be >= targetMin")
        if not 1 <= self.min_legs <= self.max_legs <= MAX_LEGS:
            raise ValidationError(f"leg bounds must satisfy 1 <= minLegs <= maxLegs <= {MAX_LEGS}")
        if self.risk not in RISK_PROFILES:
            raise ValidationError(f"risk must be one of {', '.join(RISK_PROFILES)}")
        _check_markets(self.include_markets, "includeMarkets")
        _check_markets(self.exclude_markets, "excludeMarkets")

    @property
    def markets(self) -> set[str]:
        return set(self.include_markets or MARKETS) - set(self.exclude_markets)


@dataclass
class ShuffleRequest:
    target_legs: int
    locked_leg_ids: list[str] = field(default_factory=list)
    min_odds: Optional[float] = None
    max_odds: Optional[float] = None
    include_markets: list[str] = field(default_factory=lambda: list(MARKETS))
    previous_ticket_hash: Optional[str] = None
    seed: Optional[int] = None

    def validate(self) -> None:
        if not 1 <= self.target_legs <= MAX_LEGS:
            raise ValidationError(f"targetLegs must be between 1 and {MAX_LEGS}")
        if len(set(self.locked_leg_ids)) != len(self.locked_leg_ids):
            raise ValidationError("lockedLegIds contains duplicates")
        if len(self.locked_leg_ids) > self.target_legs:
            raise ValidationError("more locked legs than targetLegs")
        if self.min_odds is not None and self.max_odds is not None and self.min_odds > self.max_odds:
            raise ValidationError("minOdds must be <= maxOdds")
        if self.seed is not None and self.seed < 0:
            raise ValidationError("seed must be non-negative")
        _check_markets(self.include_markets, "includeMarkets")


class TicketComposer:
    """Stateless ticket builder; safe to share between concurrent requests."""

    def __init__(self, settings: Settings | None = None, *, now_fn: NowFn | None = None) -> None:
        self.settings = settings or get_settings()
        self._now = now_fn or utcnow

    def _in_band(self, odds: float) -> bool:
        return self.settings.odds_min <= odds <= self.settings.odds_max

    def _ticket(self, mode: str, legs: list[TicketLeg], pool_size: int, **extra) -> GeneratedTicket:
        return GeneratedTicket(
            mode=mode,
            legs=legs,
            total_odds=round(combine_odds(legs), 2),
            estimated_win_prob=round(win_probability(legs), 6),
            ticket_hash=ticket_hash(legs),
            rules_version=self.settings.rules_version,
            generated_at=self._now(),
            pool_size=pool_size,
            **extra,
        )

    # -- optimizer -----------------------------------------------------------------

    def optimize(self, pool: Sequence[Candidate], request: OptimizeRequest) -> GeneratedTicket:
        """Build the ticket whose total odds land in the target range.

        Greedy passes over the pool sorted by distance to the risk profile's
        preferred odds, each pass starting one position later, followed by
        single-leg swaps. When no pass reaches the range the closest ticket
        that respects the leg bounds is returned with ``target_hit=False``.
        """

        request.validate()
        profile = RISK_PROFILES[request.risk]
        markets = request.markets
        eligible = [
            c
            for c in pool
            if c.market in markets and self._in_band(c.odds) and profile.eligible(c.odds, self.settings.odds_max)
        ]
        ordered = sorted(
            eligible,
            key=lambda c: (abs(c.odds - profile.preferred_odds), -c.edge_pct, to_leg(c).leg_id),
        )
        legs_by_id = {to_leg(c).leg_id: to_leg(c) for c in ordered}
        fixtures = {c.fixture_id for c in ordered}
        diagnostics: dict[str, object] = {
            "risk": profile.name,
            "eligible": len(ordered),
            "fixtures": len(fixtures),
            "reasons": [],
        }
        low, high = request.target_min, request.target_max
        midpoint = (low + high) / 2

        def score(legs: list[TicketLeg]) -> tuple[int, float, float]:
            product = combine_odds(legs)
            miss = 0.0 if low <= product <= high else min(abs(product - low), abs(product - high))
            return (0 if len(legs) >= request.min_legs else 1, miss, abs(product - midpoint))

        best: list[TicketLeg] = []
        attempts = 0
        for offset in range(max(min(len(ordered), 50), 1)):
            attempts += 1
            legs = self._greedy(ordered[offset:] + ordered[:offset], request)
            legs = self._improve(legs, list(legs_by_id.values()), request, score)
            if not best or score(legs) < score(best):
                best = legs
            if score(best)[:2] == (0, 0.0):
                break

        target_hit = bool(best) and score(best)[:2] == (0, 0.0)
        if not target_hit:
            reasons = diagnostics["reasons"]
            if len(fixtures) < request.min_legs:
                reasons.append(f"only {len(fixtures)} fixtures eligible, {request.min_legs} legs required")
            elif best:
                reasons.append(
                    f"closest total odds {combine_odds(best):.2f} outside target {low:.2f}-{high:.2f}"
                )
            if not ordered:
                reasons.append("no selections match the requested markets and risk profile")
            if not reasons:
                reasons.append(f"no feasible combination of {request.min_legs}-{request.max_legs} legs")
        diagnostics["attempts"] = attempts
        ticket = self._ticket("optimizer", best, len(ordered), target_hit=target_hit, diagnostics=diagnostics)
        logger.info(
            "Optimizer built %d legs @ %.2f (target %.2f-%.2f, hit=%s, pool=%d)",
            len(best),
            ticket.total_odds,
            low,
            high,
            target_hit,
            len(ordered),
        )
        return ticket

    @staticmethod
    def _greedy(ordered: Sequence[Candidate], request: OptimizeRequest) -> list[TicketLeg]:
        legs: list[TicketLeg] = []
        used: set[int] = set()
        product = 1.0
        for candidate in ordered:
            if len(legs) >= request.max_legs:
                break
            if candidate.fixture_id in used:
                continue
            new_product = product * candidate.odds
            if new_product > request.target_max * OVERSHOOT:
                continue
            legs.append(to_leg(candidate))
            used.add(candidate.fixture_id)
            product = new_product
            if request.target_min <= product <= request.target_max and len(legs) >= request.min_legs:
                break
        if len(legs) < request.min_legs:
            # The product cap blocked the leg floor; top up with the shortest prices.
            for candidate in sorted(ordered, key=lambda c: (c.odds, to_leg(c).leg_id)):
                if len(legs) >= request.min_legs:
                    break
                if candidate.fixture_id in used:
                    continue
                legs.append(to_leg(candidate))
                used.add(candidate.fixture_id)
        return legs

    @staticmethod
    def _improve(legs, options, request: OptimizeRequest, score) -> list[TicketLeg]:
        """Swap single legs while that moves the ticket closer to the target."""

        legs = list(legs)
        for _ in range(len(legs) * 4):
            current = score(legs)
            improved = False
            for index, leg in enumerate(legs):
                others = {l.fixture_id for i, l in enumerate(legs) if i != index}
                for option in options:
                    if option.fixture_id in others or option.leg_id == leg.leg_id:
                        continue
                    trial = legs[:index] + [option] + legs[index + 1 :]
                    if score(trial) < current:
                        legs, current, improved = trial, score(trial), True
                        break
                if improved:
                    break
            if not improved:
                break
        return legs

    # -- shuffle -------------------------------------------------------------------

    def shuffle(
        self,
        pool: Sequence[Candidate],
        request: ShuffleRequest,
        locked: Sequence[Candidate] = (),
    ) -> GeneratedTicket:
        """Fill the unlocked slots with a seeded weighted Fisher-Yates draw.

        Same seed and same pool give the same ticket.
        """

        request.validate()
        seed = request.seed if request.seed is not None else time.time_ns() % (2**63)
        rng = np.random.default_rng(seed)
        locked_legs = [to_leg(c) for c in locked]
        locked_fixtures = {leg.fixture_id for leg in locked_legs}
        low = max(request.min_odds or self.settings.odds_min, self.settings.odds_min)
        high = min(request.max_odds or self.settings.odds_max, self.settings.odds_max)
        markets = set(request.include_markets or MARKETS)
        unlocked = sorted(
            (
                c
                for c in pool
                if c.fixture_id not in locked_fixtures and c.market in markets and low <= c.odds <= high
            ),
            key=lambda c: to_leg(c).leg_id,
        )
        needed = request.target_legs - len(locked_legs)

        order = weighted_order(unlocked, rng)
        chosen: list[TicketLeg] = []
        used = set(locked_fixtures)
        for candidate in order:
            if len(chosen) >= needed:
                break
            if candidate.fixture_id in used:
                continue
            chosen.append(to_leg(candidate))
            used.add(candidate.fixture_id)

        diagnostics: dict[str, object] = {"locked": len(locked_legs), "needed": needed, "reasons": []}
        if len(chosen) < needed:
            diagnostics["reasons"].append(
                f"need {needed} unlocked legs but only {len(chosen)} distinct fixtures are available"
            )
        legs = locked_legs + chosen
        current = ticket_hash(legs)
        is_different = request.previous_ticket_hash is None or current != request.previous_ticket_hash
        ticket = self._ticket(
            "shuffle",
            legs,
            len(unlocked),
            seed=seed,
            is_different=is_different,
            target_hit=len(chosen) >= needed,
            diagnostics=diagnostics,
        )
        logger.info("Shuffle seed=%s built %d legs from pool of %d", seed, len(legs), len(unlocked))
        return ticket


def shuffle_weights(candidates: Sequence[Candidate], rng: np.random.Generator) -> np.ndarray:
    """``0.65*edge + 0.25*odds + 0.10*uniform`` with edge and odds min-max normalized."""

    if not candidates:
        return np.zeros(0)
    edges = np.array([c.edge_pct for c in candidates], dtype=float)
    odds = np.array([c.odds for c in candidates], dtype=float)

    def normalize(values: np.ndarray) -> np.ndarray:
        spread = values.max() - values.min()
        if spread <= 0:
            return np.zeros_like(values)
        return (values - values.min()) / spread

    noise = rng.random(len(candidates))
    weights = EDGE_WEIGHT * normalize(edges) + ODDS_WEIGHT * normalize(odds) + RANDOM_WEIGHT * noise
    return np.maximum(weights, 1e-9)


def weighted_order(candidates: Sequence[Candidate], rng: np.random.Generator) -> list[Candidate]:
    """Weighted Fisher-Yates: slot ``i`` draws from the tail with probability proportional to weight."""

    items = list(candidates)
    weights = shuffle_weights(items, rng)
    for i in range(len(items) - 1):
        tail = weights[i:]
        j = i + int(rng.choice(len(tail), p=tail / tail.sum()))
        items[i], items[j] = items[j], items[i]
        weights[i], weights[j] = weights[j], weights[i]
    return items
