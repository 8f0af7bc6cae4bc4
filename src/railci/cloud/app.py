from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response

from railci.config import Settings
from railci.loader import DEFAULT_WORKFLOW_FILE, load_workflow
from railci.orchestrator import Orchestrator
from railci.store import RunStore
from railci.trigger import Rejected

from .schemas import EventRequest, EventResponse, RunResponse, record_response, run_response


def _orchestrator_from_env() -> Orchestrator:
    settings = Settings.from_env()
    workflow = load_workflow(settings.workflow or DEFAULT_WORKFLOW_FILE)
    return Orchestrator(workflow, settings, store=RunStore(settings.database_url))


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """
    Webhook front end for one Orchestrator.

    Without an explicit orchestrator one is built at startup from the
    RAILCI_* environment variables.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = _orchestrator_from_env()
        yield
        app.state.orchestrator.shutdown(wait=True, cancel_active=True)

    app = FastAPI(title="railci", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    def _get(request: Request) -> Orchestrator:
        orch = request.app.state.orchestrator
        if orch is None:
            raise HTTPException(status_code=503, detail="Orchestrator not started")
        return orch

    # -------------------- Endpoints --------------------

    @app.post("/events", response_model=EventResponse, status_code=202)
    def post_event(req: EventRequest, request: Request, response: Response):
        result = _get(request).submit(req.to_event())
        if isinstance(result, Rejected):
            response.status_code = 200
            return EventResponse(admitted=False, reason=result.reason)
        return EventResponse(
            admitted=True,
            run_id=result.id,
            status=result.status.value,
            concurrency_key=result.concurrency_key,
        )

    @app.get("/runs", response_model=list[RunResponse])
    def list_runs(request: Request, limit: int = 20, key: Optional[str] = None):
        orch = _get(request)
        if orch.store is not None:
            return [record_response(rec, orch.store.jobs(rec.id)) for rec in orch.store.list_runs(limit=limit, concurrency_key=key)]
        live = sorted(orch.runs(), key=lambda r: r.created_at, reverse=True)
        return [run_response(r) for r in live if key is None or r.concurrency_key == key][:limit]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str, request: Request):
        orch = _get(request)
        run = orch.get(run_id)
        if run is not None:
            return run_response(run)
        if orch.store is not None:
            rec = orch.store.get(run_id)
            if rec is not None:
                return record_response(rec, orch.store.jobs(run_id))
        raise HTTPException(status_code=404, detail="Run not found")

    @app.post("/runs/{run_id}/cancel", response_model=RunResponse)
    def cancel_run(run_id: str, request: Request):
        orch = _get(request)
        run = orch.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if not orch.cancel(run_id):
            raise HTTPException(status_code=409, detail=f"Run already {run.status.value}")
        return run_response(run)

    return app
