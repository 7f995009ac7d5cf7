"""Poisson goal model with Bayesian shrinkage toward the league mean."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from ticketlab.config import Settings, get_settings
from ticketlab.data.schemas import TeamStatsSnapshot

MIN_LAMBDA = 1e-6


def shrink(raw_mean: float, sample_size: int, tau: float, prior_mean: float) -> float:
    """``(n*x + tau*mean) / (n + tau)``; falls back to the prior when nothing is observed."""

    if sample_size + tau <= 0:
        return prior_mean
    return (sample_size * raw_mean + tau * prior_mean) / (sample_size + tau)


def poisson_pmf(lam: float, max_k: int) -> np.ndarray:
    """Probability mass for k = 0..max_k. Tail mass above ``max_k`` is dropped."""

    lam = max(float(lam), MIN_LAMBDA)
    ks = np.arange(max_k + 1)
    log_fact = np.array([math.lgamma(k + 1) for k in ks])
    return np.exp(-lam + ks * math.log(lam) - log_fact)


def poisson_cdf(lam: float, max_k: int) -> np.ndarray:
    return np.minimum(np.cumsum(poisson_pmf(lam, max_k)), 1.0)


def prob_over(lam: float, line: float) -> float:
    """P(X > line) for a half-point line, e.g. ``line=2.5`` means three or more."""

    k = math.floor(line)
    if k < 0:
        return 1.0
    return float(np.clip(1.0 - poisson_cdf(lam, k)[-1], 0.0, 1.0))


def prob_side(lam: float, side: str, line: float) -> float:
    over = prob_over(lam, line)
    return over if side == "over" else 1.0 - over


@dataclass
class GoalModel:
    lambda_home: float
    lambda_away: float
    pmf_home: list[float] = field(default_factory=list)
    pmf_away: list[float] = field(default_factory=list)
    cdf_home: list[float] = field(default_factory=list)
    cdf_away: list[float] = field(default_factory=list)

    @property
    def lambda_total(self) -> float:
        return self.lambda_home + self.lambda_away

    def prob(self, side: str, line: float) -> float:
        return prob_side(self.lambda_total, side, line)


def goal_model(
    home_goals: float,
    home_sample: int,
    away_goals: float,
    away_sample: int,
    settings: Settings | None = None,
) -> GoalModel:
    settings = settings or get_settings()
    tau = settings.shrinkage_tau
    mean = settings.league_mean_goals
    lam_home = max(shrink(home_goals, home_sample, tau, mean) * settings.home_advantage, MIN_LAMBDA)
    lam_away = max(shrink(away_goals, away_sample, tau, mean), MIN_LAMBDA)
    k = settings.max_goals_modeled
    return GoalModel(
        lambda_home=lam_home,
        lambda_away=lam_away,
        pmf_home=poisson_pmf(lam_home, k).tolist(),
        pmf_away=poisson_pmf(lam_away, k).tolist(),
        cdf_home=poisson_cdf(lam_home, k).tolist(),
        cdf_away=poisson_cdf(lam_away, k).tolist(),
    )


def goal_model_for(home: TeamStatsSnapshot, away: TeamStatsSnapshot, settings: Settings | None = None) -> GoalModel:
    return goal_model(home.goals, home.sample_size, away.goals, away.sample_size, settings)


def market_probability(
    market: str,
    side: str,
    line: float,
    home: TeamStatsSnapshot,
    away: TeamStatsSnapshot,
    settings: Settings | None = None,
) -> float:
    """Model probability for a totals pick.

    Goals use the shrunk home/away goal model; other counting markets use a
    Poisson on the combined home + away average.
    """

    if market == "goals":
        return goal_model_for(home, away, settings).prob(side, line)
    combined = home.metric(market) + away.metric(market)
    return prob_side(combined, side, line)


def edge_pct(model_prob: float, odds: float) -> float:
    implied = 1.0 / odds
    return (model_prob - implied) / implied * 100.0
