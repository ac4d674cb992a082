# loader.py
"""
Turn raw workflow documents into validated WorkflowDefinitions.

A raw document is a mapping shaped like a CI workflow file:

    name: Rust
    on: [push, pull_request]
    env: {CARGO_TERM_COLOR: always}
    jobs:
      fmt:
        name: Format
        runs-on: ubuntu-latest
        needs: [check]
        steps:
          - uses: actions/checkout@v2
          - name: Cargo fmt
            uses: actions-rs/cargo@v1
            with: {command: fmt, args: --all -- --check}
          - run: echo done

It can come from YAML/JSON files (load_document), from a Python workflow
file written with the DSL (load_workflow), or be built in memory.
Either a complete WorkflowDefinition comes back or a ValidationError is
raised; nothing partial is returned.
"""
from __future__ import annotations

import json
import logging
import runpy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import yaml

from .dag import validate_jobs
from .errors import DuplicateJobName, InvalidDefinition, WorkflowLoadError
from .model import JobSpec, StepSpec, WorkflowDefinition

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yml", ".yaml")
RUN_ACTION = "run"


# ----------------------------------------------------------------------
# parse
# ----------------------------------------------------------------------

def parse(raw: Mapping[str, Any] | WorkflowDefinition, *, name: str | None = None) -> WorkflowDefinition:
    """Validate `raw` and build a WorkflowDefinition from it."""
    if isinstance(raw, WorkflowDefinition):
        validate_jobs(list(raw.jobs.values()))
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidDefinition(f"workflow must be a mapping, got {type(raw).__name__}")

    triggers = _parse_triggers(_trigger_field(raw))
    env = _parse_env(raw.get("env"), where="env")

    if "jobs" not in raw:
        raise InvalidDefinition("workflow has no 'jobs'")
    jobs = _parse_jobs(raw["jobs"])

    by_name = validate_jobs(jobs)

    wf_name = raw.get("name") or name or "workflow"
    definition = WorkflowDefinition(name=str(wf_name), triggers=triggers, jobs=by_name, env=env)
    logger.debug("parsed workflow %r: %d job(s), triggers=%s",
                 definition.name, len(by_name), sorted(triggers))
    return definition


def _trigger_field(raw: Mapping[str, Any]) -> Any:
    # YAML 1.1 reads a bare `on:` key as the boolean True
    if "on" in raw:
        return raw["on"]
    if True in raw:
        return raw[True]
    return raw.get("triggers")


def _parse_triggers(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset([value])
    if isinstance(value, Mapping):
        return frozenset(str(k) for k in value)
    if isinstance(value, (list, tuple, set, frozenset)):
        for kind in value:
            if not isinstance(kind, str):
                raise InvalidDefinition(f"trigger must be a string, got {kind!r}", where="on")
        return frozenset(value)
    raise InvalidDefinition(f"unsupported trigger declaration {value!r}", where="on")


def _parse_env(value: Any, *, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidDefinition("env must be a mapping", where=where)
    return {str(k): _env_value(v) for k, v in value.items()}


def _env_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _parse_jobs(value: Any) -> List[JobSpec]:
    if isinstance(value, Mapping):
        items: Iterable[Tuple[str | None, Any]] = value.items()
    elif isinstance(value, (list, tuple)):
        items = ((None, entry) for entry in value)
    else:
        raise InvalidDefinition("'jobs' must be a mapping or a list", where="jobs")

    jobs: List[JobSpec] = []
    for key, entry in items:
        if isinstance(entry, JobSpec):
            if key is not None and key != entry.name:
                raise InvalidDefinition(f"job keyed {key!r} is named {entry.name!r}", where="jobs")
            jobs.append(entry)
        else:
            jobs.append(_parse_job(key, entry))
    return jobs


def _parse_job(key: str | None, entry: Any) -> JobSpec:
    if entry is None:
        entry = {}
    if not isinstance(entry, Mapping):
        raise InvalidDefinition("job must be a mapping", where=f"jobs.{key}")

    if key is None:
        # list form: `name` is the job id, `title` the display name
        job_id = entry.get("id") or entry.get("name")
        title = entry.get("title")
    else:
        job_id = key
        title = entry.get("name")
    if not job_id or not isinstance(job_id, str):
        raise InvalidDefinition("job has no name", where="jobs")
    where = f"jobs.{job_id}"

    needs = entry.get("needs", entry.get("depends_on", ()))
    if isinstance(needs, str):
        needs = [needs]
    if not isinstance(needs, (list, tuple)) or not all(isinstance(n, str) for n in needs):
        raise InvalidDefinition("'needs' must be a job name or a list of job names", where=where)

    requires = entry.get("requires", ())
    if isinstance(requires, str):
        requires = [requires]

    steps_raw = entry.get("steps") or []
    if not isinstance(steps_raw, (list, tuple)):
        raise InvalidDefinition("'steps' must be a list", where=where)
    steps = tuple(_parse_step(s, where=f"{where}.steps[{i}]") for i, s in enumerate(steps_raw))

    runs_on = entry.get("runs-on", entry.get("runs_on"))
    if isinstance(runs_on, (list, tuple)):
        runs_on = runs_on[0] if runs_on else None

    return JobSpec(
        name=job_id,
        steps=steps,
        needs=tuple(needs),
        title=str(title) if title else None,
        runs_on=str(runs_on) if runs_on else None,
        requires=tuple(str(r) for r in requires),
        env=_parse_env(entry.get("env"), where=f"{where}.env"),
    )


def _parse_step(entry: Any, *, where: str) -> StepSpec:
    if isinstance(entry, StepSpec):
        return entry
    if not isinstance(entry, Mapping):
        raise InvalidDefinition("step must be a mapping", where=where)

    uses = entry.get("uses")
    command = entry.get("run")
    if uses and command:
        raise InvalidDefinition("step has both 'uses' and 'run'", where=where)

    if uses:
        params = entry.get("with") or {}
        if not isinstance(params, Mapping):
            raise InvalidDefinition("'with' must be a mapping", where=where)
        action = str(uses)
        params = dict(params)
        default_name = action
    elif command:
        action = RUN_ACTION
        params = {"run": str(command)}
        for opt in ("working-directory", "shell"):
            if opt in entry:
                params[opt] = entry[opt]
        default_name = f"Run {str(command).splitlines()[0]}"
    else:
        raise InvalidDefinition("step needs either 'uses' or 'run'", where=where)

    return StepSpec(name=str(entry.get("name") or default_name), action=action, params=params)


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def load_document(path: str | Path) -> WorkflowDefinition:
    """Load a YAML or JSON workflow document."""
    doc_path = Path(path).expanduser().resolve()
    if not doc_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {doc_path}")

    text = doc_path.read_text(encoding="utf-8")
    try:
        if doc_path.suffix in YAML_SUFFIXES:
            _check_duplicate_jobs(text)
            raw = yaml.safe_load(text)
        elif doc_path.suffix == ".json":
            raw = json.loads(text, object_pairs_hook=_json_pairs)
            jobs = raw.get("jobs") if isinstance(raw, dict) else None
            if isinstance(jobs, _JsonObject) and jobs.duplicates:
                raise DuplicateJobName(jobs.duplicates[0])
        else:
            raise WorkflowLoadError(f"Unsupported workflow format: {doc_path.name}")
    except yaml.YAMLError as e:
        raise WorkflowLoadError(f"Could not parse {doc_path.name}: {e}") from e
    except json.JSONDecodeError as e:
        raise WorkflowLoadError(f"Could not parse {doc_path.name}: {e}") from e

    return parse(raw, name=doc_path.stem)


def _check_duplicate_jobs(text: str) -> None:
    """safe_load keeps the last of two equal keys; look at the node tree instead."""
    root = yaml.compose(text, Loader=yaml.SafeLoader)
    if not isinstance(root, yaml.MappingNode):
        return
    for key, value in root.value:
        if key.value == "jobs" and isinstance(value, yaml.MappingNode):
            seen: set[str] = set()
            for job_key, _ in value.value:
                if job_key.value in seen:
                    raise DuplicateJobName(job_key.value)
                seen.add(job_key.value)


class _JsonObject(dict):
    duplicates: Tuple[str, ...] = ()


def _json_pairs(pairs: List[Tuple[str, Any]]) -> _JsonObject:
    out = _JsonObject()
    dupes = []
    for k, v in pairs:
        if k in out:
            dupes.append(k)
        out[k] = v
    out.duplicates = tuple(dupes)
    return out


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """
    Load a workflow from a file.

    YAML/JSON documents go through load_document. A Python file must define
    either:
      - workflow() -> WorkflowDefinition | mapping | list of jobs
      - WORKFLOW = ... / JOBS = [...]
    """
    wf_path = Path(path).expanduser().resolve()
    if wf_path.suffix != ".py":
        return load_document(wf_path)
    if not wf_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {wf_path}")

    module_name = f"pipewright_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(f"Error while executing {wf_path.name}: {e}") from e

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        raw = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        raw = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        raw = globals_dict["JOBS"]
    else:
        raise WorkflowLoadError(
            f"{wf_path.name} must define workflow() or WORKFLOW / JOBS. "
            "Use the helpers: `from pipewright import wf, job, sh`."
        )

    if isinstance(raw, (list, tuple)):
        raw = {"jobs": list(raw)}
    return parse(raw, name=wf_path.stem)
