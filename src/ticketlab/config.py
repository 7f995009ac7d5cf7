"""Environment-driven configuration helpers for TicketLab."""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or .env files."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: AnyUrl | str = Field(default="sqlite:///./ticketlab.db")
    log_level: str = Field(default="INFO")

    api_football_key: str = Field(default="", validation_alias="API_FOOTBALL_KEY")
    api_football_base_url: str = Field(default="https://v3.football.api-sports.io")
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    fetch_max_attempts: int = Field(default=3, ge=1, le=10)
    fetch_backoff_seconds: float = Field(default=1.0, ge=0.0)
    max_requests_per_minute: int = Field(default=50, ge=0)
    daily_call_budget: int = Field(default=65000, ge=0)
    season: int | None = Field(default=None)

    fixtures_ttl_hours: float = Field(default=12.0, gt=0)
    odds_ttl_hours: float = Field(default=6.0, gt=0)
    odds_stale_after_minutes: float = Field(default=60.0, gt=0)
    predictions_ttl_hours: float = Field(default=12.0, gt=0)
    stats_ttl_hours: float = Field(default=24.0, gt=0)
    results_retention_months: int = Field(default=6, ge=1)

    odds_min: float = Field(default=1.25, gt=1.0)
    odds_max: float = Field(default=5.0, gt=1.0)
    keep_top_bookmakers: int = Field(default=3, ge=1)
    min_sample_size: int = Field(default=3, ge=0, le=5)
    league_mean_goals: float = Field(default=1.4, gt=0)
    shrinkage_tau: float = Field(default=10.0, ge=0)
    home_advantage: float = Field(default=1.06, gt=0)
    max_goals_modeled: int = Field(default=4, ge=1)
    suspicious_probability_gap: float = Field(default=0.45, gt=0.0, le=1.0)
    rules_version: str = Field(default="v2_combined_matrix_v1")

    job_workers: int = Field(default=4, ge=1, le=32)
    job_soft_deadline_seconds: float = Field(default=240.0, gt=0)

    ticketlab_api_key: str = Field(default="", validation_alias="TICKETLAB_API_KEY")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


def get_api_football_key() -> str:
    """Return the API-Football key or raise a helpful error."""

    key = os.getenv("API_FOOTBALL_KEY") or get_settings().api_football_key
    if not key:
        raise RuntimeError(
            "API_FOOTBALL_KEY is not configured. "
            "Set it in .env for local dev or in the deployment environment."
        )
    return key


def get_api_access_key() -> str:
    key = os.getenv("TICKETLAB_API_KEY") or get_settings().ticketlab_api_key
    if not key:
        raise RuntimeError(
            "TICKETLAB_API_KEY is not configured. Set it in your environment before triggering jobs."
        )
    return key


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
