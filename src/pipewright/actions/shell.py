# actions/shell.py
from __future__ import annotations

from typing import Any, Dict

from ..model import StepSpec
from ..provision import EnvironmentContext
from .base import Action, ActionResult, run_process


# ---------------------------------------------------------------------
# Shell step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, shell: str | None = None) -> StepSpec:
    """Create a shell step."""
    params: Dict[str, Any] = {"run": cmd}
    if cwd is not None:
        params["working-directory"] = cwd
    if shell is not None:
        params["shell"] = shell
    return StepSpec(name=name, action=RunAction.name, params=params)


# ---------------------------------------------------------------------
# Shell step execution
# ---------------------------------------------------------------------

class RunAction(Action):
    """Run a shell command inside the job workspace."""
    name = "run"
    options = {"run": str, "working-directory": str, "shell": str}
    required = frozenset({"run"})

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        cmd = options["run"]
        shell = options.get("shell")
        if shell:
            return run_process([shell, "-c", cmd], context, cwd=options.get("working-directory"))
        return run_process(cmd, context, cwd=options.get("working-directory"), shell=True)
