"""Error taxonomy shared by the fetcher, jobs and request handlers."""

from __future__ import annotations


class TicketLabError(Exception):
    """Base class for all domain errors."""


class TransientFetchError(TicketLabError):
    """Network failure, timeout, 429 or 5xx from the data provider. Retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClientFetchError(TicketLabError):
    """Non-retryable 4xx response from the data provider."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class BudgetExhausted(TicketLabError):
    """The per-day call budget is spent; callers stop early and report partial work."""


class UnsupportedMarket(TicketLabError):
    """An odds entry outside the bet-type allow-list."""


class ValidationError(TicketLabError):
    """Malformed request parameters, rejected before any processing."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class LockContention(TicketLabError):
    """The job already holds an unexpired lock."""

    def __init__(self, job_name: str) -> None:
        super().__init__(f"Job '{job_name}' is already running")
        self.job_name = job_name


class QualificationMiss(TicketLabError):
    """A fixture had stats and odds but produced no selection at ``stage``."""

    def __init__(self, fixture_id: int, stage: str) -> None:
        super().__init__(f"Fixture {fixture_id} dropped at stage '{stage}'")
        self.fixture_id = fixture_id
        self.stage = stage
