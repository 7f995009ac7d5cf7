"""ORM models for TicketLab."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ticketlab.clock import utcnow


class Base(DeclarativeBase):
    """Base declarative class."""


class Fixture(Base):
    """Soccer fixture metadata ingested from the provider."""

    __tablename__ = "fixtures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    country_code: Mapped[str | None] = mapped_column(String(64))
    season: Mapped[int | None] = mapped_column(Integer)
    home_team_id: Mapped[int] = mapped_column(Integer, nullable=False)
    away_team_id: Mapped[int] = mapped_column(Integer, nullable=False)
    home_team_name: Mapped[str | None] = mapped_column(String(128))
    away_team_name: Mapped[str | None] = mapped_column(String(128))
    kickoff: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), default="NS")
    home_goals: Mapped[int | None] = mapped_column(Integer)
    away_goals: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class CacheEntry(Base):
    """One cached provider payload or derived snapshot."""

    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("entity_type", "cache_key", name="uq_cache_entity_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    cache_key: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)


class OptimizedSelection(Base):
    """A qualified, versioned selection at one bookmaker's price."""

    __tablename__ = "optimized_selections"
    __table_args__ = (
        UniqueConstraint(
            "fixture_id", "market", "side", "line", "bookmaker", "is_live",
            name="uq_selection_key",
        ),
        Index("ix_selection_window", "rules_version", "utc_kickoff"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fixture_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(64))
    utc_kickoff: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    market: Mapped[str] = mapped_column(String(16), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    line: Mapped[float] = mapped_column(Float, nullable=False)
    bookmaker: Mapped[str] = mapped_column(String(64), nullable=False)
    odds: Mapped[float] = mapped_column(Float, nullable=False)
    is_live: Mapped[bool] = mapped_column(Boolean, default=False)
    model_prob: Mapped[float] = mapped_column(Float, nullable=False)
    edge_pct: Mapped[float] = mapped_column(Float, nullable=False)
    sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    combined_snapshot: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    rules_version: Mapped[str] = mapped_column(String(64), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CronLock(Base):
    """Cross-process job mutex row."""

    __tablename__ = "cron_job_locks"

    job_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    locked_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    locked_by: Mapped[str | None] = mapped_column(String(128))
    locked_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class GeneratedTicketRecord(Base):
    """Append-only history of tickets returned to callers."""

    __tablename__ = "generated_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    ticket_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seed: Mapped[int | None] = mapped_column(BigInteger)
    total_odds: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_win_prob: Mapped[float] = mapped_column(Float, nullable=False)
    legs: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    rules_version: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class JobRun(Base):
    """Track scheduled job executions and their counters."""

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
