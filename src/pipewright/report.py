# report.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from .model import JobStatus, Run, RunStatus, StepStatus


@dataclass(frozen=True)
class StepReport:
    index: int
    name: str
    action: str
    status: StepStatus
    exit_code: Optional[int]
    failure: Optional[str]
    reason: Optional[str]
    output: str
    duration: float


@dataclass(frozen=True)
class JobReport:
    name: str
    title: str
    needs: Tuple[str, ...]
    status: JobStatus
    steps: Tuple[StepReport, ...]
    diagnostic: Optional[str]
    duration: Optional[float]

    @property
    def failed_step(self) -> Optional[StepReport]:
        for step in self.steps:
            if step.status is StepStatus.FAILED:
                return step
        return None


@dataclass(frozen=True)
class RunReport:
    """
    Read-only projection of a Run.

    `overall` is the run's terminal status, or for a run still in progress
    the status it would have if it stopped now; `provisional` says which.
    """
    run_id: str
    workflow: str
    event: Optional[str]
    overall: RunStatus
    provisional: bool
    cancelled: bool
    jobs: Tuple[JobReport, ...]
    diagnostics: Tuple[str, ...]

    @property
    def succeeded(self) -> bool:
        return not self.provisional and self.overall is RunStatus.SUCCEEDED

    @property
    def failed_jobs(self) -> Tuple[JobReport, ...]:
        return tuple(j for j in self.jobs if j.status is JobStatus.FAILED)

    def job(self, name: str) -> JobReport:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))

    def to_json(self, **kwargs) -> str:
        kwargs.setdefault("indent", 2)
        return json.dumps(self.to_dict(), **kwargs)


def summarize(run: Run) -> RunReport:
    """Build a RunReport from the run's current state. Does not modify the run."""
    jobs = []
    for execution in list(run.graph):
        spec = execution.spec
        steps = tuple(
            StepReport(
                index=s.index,
                name=s.name,
                action=s.action,
                status=s.status,
                exit_code=s.exit_code,
                failure=s.failure,
                reason=s.reason,
                output=s.output,
                duration=s.duration,
            )
            for s in execution.steps
        )
        duration = None
        if execution.started_at is not None and execution.finished_at is not None:
            duration = execution.finished_at - execution.started_at
        jobs.append(JobReport(
            name=spec.name,
            title=spec.display_name,
            needs=tuple(spec.needs),
            status=execution.status,
            steps=steps,
            diagnostic=execution.diagnostic,
            duration=duration,
        ))

    terminal = run.status.terminal
    return RunReport(
        run_id=run.id,
        workflow=run.definition.name,
        event=run.event.kind if run.event else None,
        overall=run.status if terminal else run.overall(),
        provisional=not terminal,
        cancelled=run.cancelled,
        jobs=tuple(jobs),
        diagnostics=tuple(run.diagnostics),
    )


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (JobStatus, StepStatus, RunStatus)):
        return value.value
    return value
