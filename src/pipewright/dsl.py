# src/pipewright/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .actions import cargo_step, checkout_step, sh, toolchain_step
from .loader import parse
from .model import JobSpec, StepSpec, WorkflowDefinition


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def uses(
    action: str,
    name: str | None = None,
    *,
    params: Optional[Mapping[str, Any]] = None,
    **options,
) -> StepSpec:
    """
    Create a step for any action identifier.

    Python keywords can't contain dashes, so `working_directory=` becomes
    the `working-directory` option. Keys in `params` are taken as written,
    for options whose names contain underscores.
    """
    merged: Dict[str, Any] = {k.replace("_", "-"): v for k, v in options.items()}
    merged.update(params or {})
    return StepSpec(name=name or action, action=action, params=merged)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepSpec,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepSpec]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    title: str | None = None,
    runs_on: str | None = None,
    requires: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> JobSpec:
    steps_final: List[StepSpec] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    return JobSpec(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        title=title,
        runs_on=runs_on,
        requires=tuple(requires or ()),
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[StepSpec] = []
        self._requires: list[str] = []
        self._env: dict[str, str] = {}
        self._title: str | None = None
        self._runs_on: str | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_requirements(self, *tools: str):
        self._requires.extend(tools)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd))
        return self

    def add_step(self, step: StepSpec):
        self._steps.append(step)
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def titled(self, title: str):
        self._title = title
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def build(self) -> JobSpec:
        return job(
            self.name,
            steps_list=self._steps,
            needs=self._needs,
            title=self._title,
            runs_on=self._runs_on,
            requires=self._requires,
            env=self._env,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: JobSpec,
    name: str = "workflow",
    on: Iterable[str] = ("push",),
    env: Optional[Dict[str, str]] = None,
) -> WorkflowDefinition:
    """
    Workflow definition helper. The result is validated like any document.

    Users can write:
        from pipewright import wf, job, sh

        def workflow():
            return wf(
                job("lint", sh("Ruff", "ruff check .")),
                job("test", sh("Pytest", "pytest -q"), needs=["lint"]),
                on=["push", "pull_request"],
            )
    """
    return parse({
        "name": name,
        "on": list(on),
        "env": dict(env or {}),
        "jobs": list(jobs),
    })


__all__ = [
    "sh",
    "uses",
    "job",
    "wf",
    "build",
    "JobBuilder",
    "checkout_step",
    "toolchain_step",
    "cargo_step",
]
