# engine.py
from __future__ import annotations

import logging
import threading
import weakref
from typing import Dict, Iterable, List, Optional

from . import dag
from .actions import ActionResolver, default_resolver
from .model import Run, TriggerEvent, WorkflowDefinition
from .provision import EnvironmentProvisioner, LocalProvisioner
from .report import RunReport, summarize
from .scheduler import RunObserver, Scheduler
from .sequencer import DEFAULT_OUTPUT_TAIL, StepSequencer
from .settings import Settings

logger = logging.getLogger(__name__)


class Engine:
    """
    Entry point tying the pieces together:

        definition -> start() -> Run (fresh job graph)
                   -> execute() -> Scheduler + StepSequencer -> RunReport

    One engine can execute several runs at the same time (e.g. behind the
    HTTP server); runs never share job state.
    """

    def __init__(
        self,
        resolver: Optional[ActionResolver] = None,
        provisioner: Optional[EnvironmentProvisioner] = None,
        *,
        max_workers: Optional[int] = None,
        observers: Iterable[RunObserver] = (),
        output_tail: int = DEFAULT_OUTPUT_TAIL,
    ):
        self.resolver = resolver or default_resolver()
        self.provisioner = provisioner or LocalProvisioner()
        self.max_workers = max_workers
        self.observers: List[RunObserver] = list(observers)
        self.sequencer = StepSequencer(self.resolver, self.provisioner, output_tail=output_tail)
        self._active: Dict[str, Scheduler] = {}
        # started, not yet executing; weak so a run nobody executes is dropped
        self._pending: "weakref.WeakValueDictionary[str, Run]" = weakref.WeakValueDictionary()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        resolver: Optional[ActionResolver] = None,
        observers: Iterable[RunObserver] = (),
    ) -> "Engine":
        provisioner = LocalProvisioner(
            settings.workspace_root,
            source_root=settings.source_root,
            labels=settings.runner_labels,
            keep_workspaces=settings.keep_workspaces,
        )
        return cls(
            resolver,
            provisioner,
            max_workers=settings.max_workers,
            observers=observers,
            output_tail=settings.output_tail,
        )

    def start(self, definition: WorkflowDefinition, event: Optional[TriggerEvent] = None) -> Run:
        run = Run(definition=definition, graph=dag.build(definition), event=event)
        with self._lock:
            self._pending[run.id] = run
        logger.info("run %s created for workflow %r (%d job(s))", run.id, definition.name, len(definition.jobs))
        return run

    def execute(self, run: Run, *, max_workers: Optional[int] = None) -> RunReport:
        scheduler = Scheduler(
            run,
            self.sequencer,
            max_workers=max_workers or self.max_workers,
            observers=self.observers,
        )
        with self._lock:
            self._active[run.id] = scheduler
            self._pending.pop(run.id, None)
            if run.cancel_requested:
                scheduler.cancel()
        try:
            scheduler.run()
        finally:
            with self._lock:
                self._active.pop(run.id, None)
        return summarize(run)

    def run(
        self,
        definition: WorkflowDefinition,
        event: Optional[TriggerEvent] = None,
        *,
        max_workers: Optional[int] = None,
    ) -> RunReport:
        return self.execute(self.start(definition, event), max_workers=max_workers)

    def cancel(self, run_id: str) -> bool:
        """Request cancellation of a started or executing run. False if this engine does not know it or it finished."""
        with self._lock:
            scheduler = self._active.get(run_id)
            if scheduler is None:
                run = self._pending.get(run_id)
                if run is None:
                    return False
                run.cancel_requested = True
                return True
        scheduler.cancel()
        return True
