# scheduler.py
from __future__ import annotations

import logging
import os
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Deque, Dict, Iterable, List, Optional, Protocol, Set

from .model import JobExecution, JobOutcome, JobSpec, JobStatus, Run, RunStatus, StepResult
from .sequencer import StepSequencer

logger = logging.getLogger(__name__)


class RunObserver(Protocol):
    """Progress callbacks. `step_finished` arrives from worker threads, the rest from the scheduler loop."""

    def job_started(self, run: Run, job: JobExecution) -> None: ...

    def step_finished(self, run: Run, job: JobSpec, step: StepResult) -> None: ...

    def job_finished(self, run: Run, job: JobExecution) -> None: ...

    def run_finished(self, run: Run) -> None: ...


def default_max_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class Scheduler:
    """
    Drives one Run to completion.

    - jobs are admitted from a ready queue, at most `max_workers` running at once
    - each admitted job runs in a worker thread through the StepSequencer
    - the loop below is the only writer of job statuses, dependency counters
      and the ready queue; workers hand back a JobOutcome
    - a dependent becomes READY once all its needs SUCCEEDED; if one of them
      FAILED or was SKIPPED it is SKIPPED at once (and so are its own
      dependents), other branches keep going
    - cancel() stops admission; running jobs stop at the next step boundary
      and every job that did not finish ends SKIPPED
    """

    def __init__(
        self,
        run: Run,
        sequencer: StepSequencer,
        *,
        max_workers: Optional[int] = None,
        observers: Iterable[RunObserver] = (),
    ):
        if max_workers is None:
            max_workers = default_max_workers()
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        self.run_state = run
        self.sequencer = sequencer
        self.max_workers = max_workers
        self.observers: List[RunObserver] = list(observers)
        self._cancel = threading.Event()
        self._interrupted: Set[str] = set()   # jobs cancellation cut short

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        if not self._cancel.is_set():
            logger.info("run %s: cancellation requested", self.run_state.id)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> Run:
        run = self.run_state
        graph = run.graph
        run.advance(RunStatus.RUNNING)

        ready: Deque[str] = deque(graph.ready())
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pipewright-job") as pool:
            while ready or in_flight:
                if self._cancel.is_set():
                    ready.clear()

                # admit ready jobs up to the concurrency ceiling
                while ready and len(in_flight) < self.max_workers:
                    name = ready.popleft()
                    execution = graph[name]
                    if not execution.spec.steps:
                        self._finish(name, JobOutcome(status=JobStatus.SUCCEEDED, steps=()), ready)
                        continue
                    execution.status = JobStatus.RUNNING
                    self._notify("job_started", run, execution)
                    fut = pool.submit(self.sequencer.run, execution.spec, self._cancel, self._step_finished)
                    in_flight[fut] = name

                if not in_flight:
                    continue

                # wait for at least one completion, then loop to admit newly-ready jobs
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        outcome = fut.result()
                    except Exception as e:
                        logger.exception("job %s crashed outside of its steps", name)
                        run.diagnostics.append(f"job {name!r} crashed: {type(e).__name__}: {e}")
                        outcome = JobOutcome.untouched(
                            graph[name].spec, JobStatus.FAILED, f"{type(e).__name__}: {e}"
                        )
                    # sequencers only skip a job when cancellation reached it
                    self._finish(name, outcome, ready, interrupted=outcome.status is JobStatus.SKIPPED)

        if self._cancel.is_set():
            for execution in list(graph):
                if not execution.status.terminal:
                    self._finish(
                        execution.name,
                        JobOutcome.untouched(execution.spec, JobStatus.SKIPPED, "run cancelled"),
                        ready,
                        interrupted=True,
                    )

        if self._interrupted:
            run.cancelled = True
            not_started = sum(1 for n in self._interrupted if graph[n].started_at is None)
            run.diagnostics.append(f"run cancelled, {not_started} job(s) not started")

        run.advance(run.overall())
        logger.info("run %s finished: %s", run.id, run.status.value)
        self._notify("run_finished", run)
        return run

    # ------------------------------------------------------------------
    # Internals (scheduler loop only)
    # ------------------------------------------------------------------

    def _finish(self, name: str, outcome: JobOutcome, ready: Deque[str], *, interrupted: bool = False) -> None:
        """
        Apply a terminal outcome and propagate it downstream.

        `interrupted` marks the job, and every dependent skipped because of
        it, as cut short by cancellation.
        """
        graph = self.run_state.graph
        pending = deque([(name, outcome)])

        while pending:
            job_name, job_outcome = pending.popleft()
            if interrupted:
                self._interrupted.add(job_name)
            execution = graph[job_name]
            execution.apply(job_outcome)
            logger.debug("job %s -> %s", job_name, execution.status.value)
            self._notify("job_finished", self.run_state, execution)

            for dependent in graph.dependents[job_name]:
                graph.outstanding[dependent] -= 1
                child = graph[dependent]
                if child.status.terminal:
                    continue
                if execution.status is not JobStatus.SUCCEEDED:
                    reason = f"dependency '{job_name}' {execution.status.value}"
                    child.status = JobStatus.SKIPPED
                    pending.append((dependent, JobOutcome.untouched(child.spec, JobStatus.SKIPPED, reason)))
                elif graph.outstanding[dependent] == 0:
                    child.status = JobStatus.READY
                    ready.append(dependent)

    def _notify(self, event: str, *args) -> None:
        for observer in self.observers:
            callback = getattr(observer, event, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception("observer %r failed on %s", observer, event)

    def _step_finished(self, job: JobSpec, step: StepResult) -> None:
        # called from worker threads
        self._notify("step_finished", self.run_state, job, step)
