"""FastAPI backend for TicketLab."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ticketlab import __version__
from ticketlab.api.schemas import (
    JobReportResponse,
    JobTriggerRequest,
    OptimizeTicketRequest,
    SelectionQueryRequest,
    SelectionResponse,
    ShuffleTicketRequest,
    TicketResponse,
)
from ticketlab.config import get_api_access_key
from ticketlab.errors import ValidationError
from ticketlab.scheduling.jobs import JOBS, JobOptions, last_run, run_job
from ticketlab.scheduling.orchestrator import RefreshOrchestrator
from ticketlab.services import Services, get_services

logger = logging.getLogger(__name__)

app = FastAPI(
    title="TicketLab Soccer API",
    version=__version__,
    description="Qualified over/under selections and multi-leg ticket generation.",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "reason": exc.reason},
    )


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    expected = get_api_access_key()
    if not x_api_key or x_api_key != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


ServicesDep = Annotated[Services, Depends(get_services)]
APIKeyDep = Annotated[None, Depends(require_api_key)]
WaitQuery = Annotated[bool, Query()]


def _options(payload: JobTriggerRequest | None) -> JobOptions:
    payload = payload or JobTriggerRequest()
    return JobOptions(
        window_hours=payload.window_hours,
        force=payload.force,
        deadline_seconds=payload.deadline_seconds,
    )


def _run_in_background(services: Services, job_name: str, options: JobOptions) -> None:
    try:
        run_job(services, job_name, options)
    except Exception:
        logger.exception("Background job %s failed", job_name)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version(services: ServicesDep) -> dict[str, Any]:
    return {
        "name": "ticketlab-soccer",
        "version": __version__,
        "rules_version": services.settings.rules_version,
    }


@app.post("/selections/query", response_model=SelectionResponse)
def query_selections(payload: SelectionQueryRequest, services: ServicesDep) -> SelectionResponse:
    page = services.store.query(payload.to_query())
    return SelectionResponse(
        selections=page.selections,
        count=page.count,
        total_qualified=page.total_qualified,
        window=page.window,
        debug=page.debug,
        reasons=page.reasons,
    )


@app.post("/tickets/optimize", response_model=TicketResponse)
def optimize_ticket(payload: OptimizeTicketRequest, services: ServicesDep) -> TicketResponse:
    ticket = services.tickets.optimize(payload.to_request())
    return TicketResponse.from_ticket(ticket)


@app.post("/tickets/shuffle", response_model=TicketResponse)
def shuffle_ticket(payload: ShuffleTicketRequest, services: ServicesDep) -> TicketResponse:
    ticket = services.tickets.shuffle(payload.to_request())
    return TicketResponse.from_ticket(ticket)


@app.post("/jobs/{job_name}")
def trigger_job(
    job_name: str,
    _: APIKeyDep,
    services: ServicesDep,
    background_tasks: BackgroundTasks,
    payload: JobTriggerRequest | None = None,
    wait: WaitQuery = False,
) -> dict[str, Any]:
    if job_name not in JOBS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job_name}'")
    options = _options(payload)
    if not wait:
        background_tasks.add_task(_run_in_background, services, job_name, options)
        return {"status": "accepted", "job_name": job_name}
    try:
        report = run_job(services, job_name, options)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Job {job_name} failed: {exc}") from exc
    return JobReportResponse(**report.as_dict()).model_dump()


@app.get("/jobs/{job_name}/last")
def job_last_run(job_name: str, _: APIKeyDep, services: ServicesDep) -> dict[str, Any]:
    if job_name not in JOBS and job_name != "refresh-pipeline":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job_name}'")
    run = last_run(services, job_name)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{job_name} has not run yet")
    return run


@app.post("/pipeline/refresh")
def refresh_pipeline(
    _: APIKeyDep,
    services: ServicesDep,
    background_tasks: BackgroundTasks,
    payload: JobTriggerRequest | None = None,
    wait: WaitQuery = False,
) -> dict[str, Any]:
    orchestrator = RefreshOrchestrator(services)
    options = _options(payload)
    if not wait:
        background_tasks.add_task(orchestrator.run, options)
        return {"status": "accepted", "job_name": "refresh-pipeline"}
    return orchestrator.run(options).as_dict()
