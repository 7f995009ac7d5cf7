"""CLI entrypoint to run the TicketLab FastAPI server."""

from __future__ import annotations

import os

import uvicorn

from ticketlab.config import configure_logging
from ticketlab.db.database import init_db


def main() -> None:
    configure_logging()
    init_db()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("ticketlab.api.server:app", host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":  # pragma: no cover
    main()
