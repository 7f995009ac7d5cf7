"""Request-scoped ticket generation on top of the selection store."""

from __future__ import annotations

import logging

from sqlalchemy.orm import sessionmaker

from ticketlab.db.database import get_session
from ticketlab.db.models import GeneratedTicketRecord
from ticketlab.errors import ValidationError
from ticketlab.selections.store import SelectionStore
from ticketlab.tickets.composer import OptimizeRequest, ShuffleRequest, TicketComposer, to_leg
from ticketlab.tickets.types import GeneratedTicket

logger = logging.getLogger(__name__)


class TicketService:
    def __init__(
        self,
        store: SelectionStore,
        composer: TicketComposer | None = None,
        session_factory: sessionmaker | None = None,
    ) -> None:
        self.store = store
        self.composer = composer or TicketComposer(store.settings)
        self.session_factory = session_factory

    def _persist(self, ticket: GeneratedTicket) -> None:
        with get_session(self.session_factory) as session:
            session.add(
                GeneratedTicketRecord(
                    mode=ticket.mode,
                    ticket_hash=ticket.ticket_hash,
                    seed=ticket.seed,
                    total_odds=ticket.total_odds,
                    estimated_win_prob=ticket.estimated_win_prob,
                    legs=[leg.as_dict() for leg in ticket.legs],
                    rules_version=ticket.rules_version,
                    created_at=ticket.generated_at,
                )
            )

    def optimize(self, request: OptimizeRequest) -> GeneratedTicket:
        request.validate()
        pool, funnel = self.store.ticket_pool(request.include_markets, request.exclude_markets)
        ticket = self.composer.optimize(pool, request)
        ticket.diagnostics["pool"] = dict(funnel)
        self._persist(ticket)
        return ticket

    def shuffle(self, request: ShuffleRequest) -> GeneratedTicket:
        request.validate()
        everything, _ = self.store.ticket_pool()
        by_id = {to_leg(c).leg_id: c for c in everything}
        missing = [leg_id for leg_id in request.locked_leg_ids if leg_id not in by_id]
        if missing:
            raise ValidationError(f"locked legs are no longer available: {', '.join(missing)}")
        locked = [by_id[leg_id] for leg_id in request.locked_leg_ids]
        if len({c.fixture_id for c in locked}) != len(locked):
            raise ValidationError("locked legs must come from different fixtures")
        pool, funnel = self.store.ticket_pool(
            request.include_markets, min_odds=request.min_odds, max_odds=request.max_odds
        )
        ticket = self.composer.shuffle(pool, request, locked)
        ticket.diagnostics["pool"] = dict(funnel)
        self._persist(ticket)
        return ticket
