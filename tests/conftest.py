"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from builders import MutableClock
from ticketlab.config import Settings
from ticketlab.db.database import make_session_factory


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        job_workers=2,
        job_soft_deadline_seconds=60,
        rules_version="v2_combined_matrix_v1",
        max_requests_per_minute=0,
    )


@pytest.fixture
def session_factory(tmp_path):
    factory = make_session_factory(f"sqlite:///{tmp_path / 'ticketlab.db'}")
    yield factory
    factory.kw["bind"].dispose()
