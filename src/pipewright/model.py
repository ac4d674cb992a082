# model.py
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


# ----------------------------------------------------------------------
# Definition model (immutable once parsed)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepSpec:
    """A single action invocation inside a job. `params` are never interpreted here."""
    name: str
    action: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobSpec:
    """
    A CI job: ordered steps + dependencies + execution requirements.

    `needs` lists the jobs that must succeed before this one starts.
    `runs_on`, `requires` and `env` are handed to the environment provisioner.
    """
    name: str
    steps: Tuple[StepSpec, ...] = ()
    needs: Tuple[str, ...] = ()

    title: str | None = None              # display name ("Build Release")
    runs_on: str | None = None            # runner label, e.g. "ubuntu-latest"
    requires: Tuple[str, ...] = ()        # tools that must be on PATH
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    triggers: frozenset
    jobs: Mapping[str, JobSpec]
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "jobs", MappingProxyType(dict(self.jobs)))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "triggers", frozenset(self.triggers))

    def job_names(self) -> List[str]:
        return list(self.jobs)

    def subset(self, names: List[str]) -> "WorkflowDefinition":
        """Restrict to `names` plus everything they transitively need."""
        keep: set[str] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in keep:
                continue
            if name not in self.jobs:
                raise KeyError(name)
            keep.add(name)
            stack.extend(self.jobs[name].needs)
        return WorkflowDefinition(
            name=self.name,
            triggers=self.triggers,
            jobs={n: j for n, j in self.jobs.items() if n in keep},
            env=self.env,
        )


# ----------------------------------------------------------------------
# Statuses
# ----------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


class StepStatus(str, Enum):
    NOT_RUN = "not_run"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


_RUN_ORDER = {
    RunStatus.PENDING: 0,
    RunStatus.RUNNING: 1,
    RunStatus.SUCCEEDED: 2,
    RunStatus.FAILED: 2,
}


# ----------------------------------------------------------------------
# Runtime state
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    index: int
    name: str
    action: str
    status: StepStatus
    exit_code: int | None = None
    failure: str | None = None   # "exit" | "error" when status is FAILED
    reason: str | None = None
    output: str = ""             # captured output tail
    duration: float = 0.0

    @classmethod
    def not_run(cls, index: int, step: StepSpec) -> "StepResult":
        return cls(index=index, name=step.name, action=step.action, status=StepStatus.NOT_RUN)


@dataclass(frozen=True)
class JobOutcome:
    """What a sequencer hands back to the scheduler for one job."""
    status: JobStatus
    steps: Tuple[StepResult, ...]
    diagnostic: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @classmethod
    def untouched(cls, spec: JobSpec, status: JobStatus, diagnostic: str | None = None) -> "JobOutcome":
        steps = tuple(StepResult.not_run(i, s) for i, s in enumerate(spec.steps))
        return cls(status=status, steps=steps, diagnostic=diagnostic)


@dataclass
class JobExecution:
    """
    Runtime state of one job within one run.

    Only the scheduler writes `status`; sequencers return a JobOutcome instead.
    """
    spec: JobSpec
    status: JobStatus = JobStatus.PENDING
    steps: Tuple[StepResult, ...] = ()
    diagnostic: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    def apply(self, outcome: JobOutcome) -> None:
        self.status = outcome.status
        self.steps = outcome.steps
        self.diagnostic = outcome.diagnostic
        if outcome.started_at is not None:
            self.started_at = outcome.started_at
        self.finished_at = outcome.finished_at or time.time()


@dataclass
class JobGraph:
    executions: Dict[str, JobExecution]
    dependents: Dict[str, Tuple[str, ...]]   # job -> jobs that need it
    outstanding: Dict[str, int]              # job -> dependencies not yet terminal

    def __getitem__(self, name: str) -> JobExecution:
        return self.executions[name]

    def __iter__(self):
        return iter(self.executions.values())

    def ready(self) -> List[str]:
        return [n for n, e in self.executions.items() if e.status is JobStatus.READY]


@dataclass(frozen=True)
class TriggerEvent:
    kind: str
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Run:
    """One execution of a workflow definition. Owns its graph exclusively."""
    definition: WorkflowDefinition
    graph: JobGraph
    event: Optional[TriggerEvent] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    cancelled: bool = False
    cancel_requested: bool = False      # set before execution starts
    diagnostics: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def advance(self, status: RunStatus) -> None:
        """Move the run status forward. Terminal statuses never change again."""
        with self._lock:
            if self.status.terminal:
                raise RuntimeError(f"run {self.id} already finished ({self.status.value})")
            if _RUN_ORDER[status] < _RUN_ORDER[self.status]:
                raise RuntimeError(f"run status cannot go from {self.status.value} to {status.value}")
            self.status = status
            if status.terminal:
                self.finished_at = time.time()

    def overall(self) -> RunStatus:
        """Overall status computed from job states, whether or not the run finished."""
        if any(e.status is JobStatus.FAILED for e in self.graph):
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED
