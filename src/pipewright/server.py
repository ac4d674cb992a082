"""FastAPI app: trigger events in, run reports out."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from .engine import Engine
from .loader import load_workflow
from .model import Run, WorkflowDefinition
from .report import summarize
from .settings import Settings
from .triggers import on_event

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------

class EventRequest(BaseModel):
    """A source-control event, e.g. {"event": "push", "context": {"ref": "main"}}."""
    event: str
    context: Dict[str, Any] = Field(default_factory=dict)


class EventResponse(BaseModel):
    started: bool
    run_id: Optional[str] = None
    workflow: str


class RunSummary(BaseModel):
    run_id: str
    workflow: str
    event: Optional[str]
    status: str
    cancelled: bool


class CancelResponse(BaseModel):
    run_id: str
    cancelled: bool


# -------------------------------------------------------------------------
# Run store
# -------------------------------------------------------------------------

class RunStore:
    """In-memory registry of the runs started by this process."""

    def __init__(self):
        self._runs: Dict[str, Run] = {}
        self._lock = threading.Lock()

    def add(self, run: Run) -> None:
        with self._lock:
            self._runs[run.id] = run

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def all(self) -> List[Run]:
        with self._lock:
            return sorted(self._runs.values(), key=lambda r: r.created_at)


# -------------------------------------------------------------------------
# App
# -------------------------------------------------------------------------

def create_app(
    definition: Optional[WorkflowDefinition] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """
    Build the app. Without arguments (uvicorn factory mode) the workflow and
    engine come from PIPEWRIGHT_* environment settings.
    """
    if definition is None or engine is None:
        settings = Settings.from_env()
        if definition is None:
            if not settings.workflow:
                raise RuntimeError("PIPEWRIGHT_WORKFLOW is not set")
            definition = load_workflow(settings.workflow)
        if engine is None:
            engine = Engine.from_settings(settings)

    app = FastAPI(title="pipewright")
    store = RunStore()
    app.state.definition = definition
    app.state.engine = engine
    app.state.runs = store

    def execute(run: Run) -> None:
        report = engine.execute(run)
        logger.info("run %s finished: %s", run.id, report.overall.value)

    @app.get("/health")
    async def health():
        return {"status": "ok", "workflow": definition.name}

    @app.post("/events", response_model=EventResponse)
    async def trigger(req: EventRequest, background: BackgroundTasks, response: Response):
        run = on_event(engine, definition, req.event, req.context)
        if run is None:
            return EventResponse(started=False, workflow=definition.name)

        store.add(run)
        # sync function: Starlette runs it in its threadpool after responding
        background.add_task(execute, run)
        response.status_code = 202
        return EventResponse(started=True, run_id=run.id, workflow=definition.name)

    @app.get("/runs", response_model=List[RunSummary])
    async def list_runs():
        return [
            RunSummary(
                run_id=r.id,
                workflow=r.definition.name,
                event=r.event.kind if r.event else None,
                status=r.status.value,
                cancelled=r.cancelled,
            )
            for r in store.all()
        ]

    @app.get("/runs/{run_id}")
    async def get_run(run_id: str):
        run = store.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return summarize(run).to_dict()

    @app.post("/runs/{run_id}/cancel", response_model=CancelResponse)
    async def cancel_run(run_id: str):
        run = store.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if run.status.terminal:
            raise HTTPException(status_code=409, detail=f"Run already {run.status.value}")
        return CancelResponse(run_id=run_id, cancelled=engine.cancel(run_id))

    return app
