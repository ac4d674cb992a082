# actions/base.py
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Sequence

from ..errors import InvalidParameters
from ..provision import EnvironmentContext


@dataclass(frozen=True)
class ActionResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Action:
    """
    An executable step kind.

    Subclasses declare the option keys they recognize in `options`
    (key -> str | bool | int) and which of them are `required`. Parameters
    are checked against that table when the action is invoked, never earlier:
    the engine itself treats them as opaque.
    """
    name: ClassVar[str] = ""
    options: ClassVar[Dict[str, type]] = {}
    required: ClassVar[FrozenSet[str]] = frozenset()

    def validate(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        problems: List[str] = []
        out: Dict[str, Any] = {}

        for key in sorted(set(params) - set(self.options)):
            problems.append(f"unknown option {key!r}")
        for key in sorted(self.required - set(params)):
            problems.append(f"missing required option {key!r}")

        for key, kind in self.options.items():
            if key not in params:
                continue
            try:
                out[key] = _coerce(params[key], kind)
            except ValueError as e:
                problems.append(f"{key}: {e}")

        if problems:
            raise InvalidParameters(self.name, problems)
        return out

    def invoke(self, params: Mapping[str, Any], context: EnvironmentContext) -> ActionResult:
        return self.execute(self.validate(params), context)

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        raise NotImplementedError


def _coerce(value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError(f"expected a boolean, got {value!r}")
    if kind is int:
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"expected an integer, got {value!r}") from None
    if kind is str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (str, int, float)):
            return str(value)
        raise ValueError(f"expected a string, got {value!r}")
    return value


def run_process(
    cmd: Sequence[str] | str,
    context: EnvironmentContext,
    *,
    cwd: str | None = None,
    shell: bool = False,
) -> ActionResult:
    """Run a command in the job workspace with the job's environment; stdout and stderr are merged."""
    workdir = (context.workspace / (cwd or ".")).resolve()
    if not workdir.exists():
        raise FileNotFoundError(f"[{context.job}] working directory not found: {workdir}")

    proc = subprocess.run(
        cmd,
        shell=shell,
        cwd=str(workdir),
        env=context.env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    return ActionResult(exit_code=proc.returncode, output=proc.stdout or "")


def source_path(context: EnvironmentContext) -> Path:
    if context.source_root is None:
        raise FileNotFoundError(f"[{context.job}] no source repository configured")
    return context.source_root
