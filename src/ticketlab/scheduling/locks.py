"""Cross-process job mutex backed by the ``cron_job_locks`` table."""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ticketlab.clock import NowFn, utcnow
from ticketlab.db.database import get_session
from ticketlab.db.models import CronLock
from ticketlab.errors import LockContention

logger = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class JobLock:
    """Acquire/release named locks that expire on their own after a crash."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        *,
        holder: str | None = None,
        now_fn: NowFn | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.holder = holder or default_holder()
        self._now = now_fn or utcnow

    def acquire(self, job_name: str, duration_minutes: float) -> bool:
        """Take the lock unless an unexpired one exists.

        An expired row is taken over with one conditional UPDATE; a missing
        row is created with an INSERT that loses cleanly on a concurrent insert.
        """

        now = self._now()
        locked_until = now + timedelta(minutes=duration_minutes)
        with get_session(self.session_factory) as session:
            result = session.execute(
                update(CronLock)
                .where(CronLock.job_name == job_name, CronLock.locked_until <= now)
                .values(locked_until=locked_until, locked_by=self.holder, locked_at=now)
            )
            if result.rowcount == 1:
                logger.info("Lock %s taken over from expired holder by %s", job_name, self.holder)
                return True
        try:
            with get_session(self.session_factory) as session:
                session.add(
                    CronLock(
                        job_name=job_name,
                        locked_until=locked_until,
                        locked_by=self.holder,
                        locked_at=now,
                    )
                )
        except IntegrityError:
            logger.info("Lock %s is held by another run", job_name)
            return False
        logger.info("Lock %s acquired by %s until %s", job_name, self.holder, locked_until)
        return True

    def release(self, job_name: str) -> None:
        with get_session(self.session_factory) as session:
            session.execute(delete(CronLock).where(CronLock.job_name == job_name))
        logger.info("Lock %s released", job_name)

    def current(self, job_name: str) -> CronLock | None:
        """The unexpired lock row for ``job_name``, if any."""

        with get_session(self.session_factory) as session:
            lock = session.scalars(select(CronLock).where(CronLock.job_name == job_name)).first()
            if lock is None or lock.locked_until <= self._now():
                return None
            return lock

    @contextmanager
    def hold(self, job_name: str, duration_minutes: float) -> Iterator[None]:
        if not self.acquire(job_name, duration_minutes):
            raise LockContention(job_name)
        try:
            yield
        finally:
            self.release(job_name)
