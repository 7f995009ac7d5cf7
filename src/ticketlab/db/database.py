"""Database helpers for TicketLab."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ticketlab.config import get_settings
from ticketlab.db.models import Base

__all__ = ["engine", "SessionLocal", "dialect_insert", "get_session", "init_db", "make_session_factory"]

_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, echo=False, **kwargs)
    return create_engine(url, future=True, echo=False, pool_pre_ping=True)


settings = get_settings()
engine = _build_engine(str(settings.database_url))
SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


def make_session_factory(url: str, create_tables: bool = True) -> sessionmaker:
    """Build an isolated session factory, e.g. for tests or a separate worker process."""

    bound = _build_engine(url)
    if create_tables:
        Base.metadata.create_all(bound)
    return sessionmaker(bind=bound, class_=Session, expire_on_commit=False, autoflush=False)


def init_db(factory: sessionmaker | None = None) -> None:
    bind = factory.kw["bind"] if factory is not None else engine
    Base.metadata.create_all(bind)


@contextmanager
def get_session(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dialect_insert(session: Session, model):
    """``INSERT`` construct for the session's dialect with ``ON CONFLICT`` support."""

    name = session.get_bind().dialect.name
    if name not in _UPSERT_INSERTS:
        raise RuntimeError(f"Upserts are not supported on the {name} dialect")
    return _UPSERT_INSERTS[name](model)
