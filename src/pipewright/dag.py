# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .errors import CyclicDependency, DuplicateJobName, UnknownDependency
from .model import JobExecution, JobGraph, JobSpec, JobStatus, WorkflowDefinition


def validate_jobs(jobs: Sequence[JobSpec]) -> Dict[str, JobSpec]:
    """
    Check a list of jobs forms a DAG and return them keyed by name.

    Requires:
      - job.name: unique
      - job.needs: names of jobs that exist
      - no dependency cycle
    """
    by_name: Dict[str, JobSpec] = {}
    for job in jobs:
        if job.name in by_name:
            raise DuplicateJobName(job.name)
        by_name[job.name] = job

    for job in jobs:
        for dep in job.needs:
            if dep not in by_name:
                raise UnknownDependency(job.name, dep, known=list(by_name))

    cycle = find_cycle(by_name)
    if cycle:
        raise CyclicDependency(cycle)

    return by_name


def find_cycle(jobs: Dict[str, JobSpec]) -> List[str] | None:
    """
    Depth-first search with a recursion stack.

    Returns the cycle closed by the first back-edge found (["a", "b", "a"]),
    or None. Jobs and their needs are visited in declaration order so the
    reported cycle is stable.
    """
    done: Set[str] = set()
    on_stack: Dict[str, int] = {}   # job -> position in path
    path: List[str] = []

    for root in jobs:
        if root in done:
            continue
        # iterative DFS: (job, iterator over its needs)
        frames = [(root, iter(jobs[root].needs))]
        on_stack[root] = 0
        path.append(root)

        while frames:
            node, deps = frames[-1]
            advanced = False
            for dep in deps:
                if dep in on_stack:
                    return path[on_stack[dep]:] + [dep]
                if dep in done:
                    continue
                on_stack[dep] = len(path)
                path.append(dep)
                frames.append((dep, iter(jobs[dep].needs)))
                advanced = True
                break
            if not advanced:
                frames.pop()
                path.pop()
                del on_stack[node]
                done.add(node)

    return None


def build(definition: WorkflowDefinition) -> JobGraph:
    """
    Turn a validated definition into a fresh job graph.

    Jobs without needs start READY, the rest PENDING. `dependents` is the
    reverse-edge index used to notify downstream jobs. Workflow-level env
    is folded into each job spec; job values win.
    """
    dependents: Dict[str, List[str]] = {name: [] for name in definition.jobs}
    outstanding: Dict[str, int] = {}
    executions: Dict[str, JobExecution] = {}

    for name, spec in definition.jobs.items():
        needs = _unique(spec.needs)
        outstanding[name] = len(needs)
        for dep in needs:
            dependents[dep].append(name)
        if definition.env:
            spec = replace(spec, env={**definition.env, **spec.env})
        status = JobStatus.READY if not needs else JobStatus.PENDING
        executions[name] = JobExecution(spec=spec, status=status)

    return JobGraph(
        executions=executions,
        dependents={n: tuple(d) for n, d in dependents.items()},
        outstanding=outstanding,
    )


def topo_levels(definition: WorkflowDefinition) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Each stage can run in parallel once the previous ones succeeded.
    """
    graph = build(definition)
    indeg = dict(graph.outstanding)
    q = deque(n for n, d in indeg.items() if d == 0)

    levels: List[List[str]] = []
    while q:
        level_size = len(q)
        level: List[str] = []
        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            for child in graph.dependents[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    return levels


def _unique(names: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for n in names:
        seen.setdefault(n, None)
    return tuple(seen)
