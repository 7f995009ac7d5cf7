"""Job lock tests."""

from __future__ import annotations

import pytest

from ticketlab.errors import LockContention
from ticketlab.scheduling.locks import JobLock


def test_second_acquire_fails_until_release(session_factory, clock) -> None:
    first = JobLock(session_factory, holder="worker-a", now_fn=clock)
    second = JobLock(session_factory, holder="worker-b", now_fn=clock)
    assert first.acquire("stats-refresh", 60)
    assert not second.acquire("stats-refresh", 60)
    assert first.current("stats-refresh").locked_by == "worker-a"
    first.release("stats-refresh")
    assert first.current("stats-refresh") is None
    assert second.acquire("stats-refresh", 60)


def test_expired_lock_is_taken_over(session_factory, clock) -> None:
    first = JobLock(session_factory, holder="worker-a", now_fn=clock)
    second = JobLock(session_factory, holder="worker-b", now_fn=clock)
    assert first.acquire("odds-backfill", 30)
    clock.advance(minutes=29)
    assert not second.acquire("odds-backfill", 30)
    clock.advance(minutes=1)
    assert second.acquire("odds-backfill", 30)
    assert second.current("odds-backfill").locked_by == "worker-b"


def test_locks_are_per_job_name(session_factory, clock) -> None:
    lock = JobLock(session_factory, now_fn=clock)
    assert lock.acquire("stats-refresh", 60)
    assert lock.acquire("odds-backfill", 30)


def test_hold_raises_on_contention_and_releases(session_factory, clock) -> None:
    holder = JobLock(session_factory, holder="worker-a", now_fn=clock)
    other = JobLock(session_factory, holder="worker-b", now_fn=clock)
    with holder.hold("selections-refresh", 15):
        with pytest.raises(LockContention) as excinfo:
            with other.hold("selections-refresh", 15):
                pass
        assert excinfo.value.job_name == "selections-refresh"
    assert holder.current("selections-refresh") is None
