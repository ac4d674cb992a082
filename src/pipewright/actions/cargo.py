# actions/cargo.py
from __future__ import annotations

import shlex
from typing import Any, Dict

from ..model import StepSpec
from ..provision import EnvironmentContext, tool_hint
from .base import Action, ActionResult, run_process


def cargo_step(name: str, command: str, args: str | None = None) -> StepSpec:
    params: Dict[str, Any] = {"command": command}
    if args:
        params["args"] = args
    return StepSpec(name=name, action="actions-rs/cargo@v1", params=params)


class CargoAction(Action):
    """Run `cargo <command> <args>` in the workspace."""
    name = "cargo"
    options = {
        "command": str,
        "args": str,
        "toolchain": str,
        "working-directory": str,
    }
    required = frozenset({"command"})

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        cargo = context.which("cargo")
        if cargo is None:
            return ActionResult(exit_code=127, output=f"cargo not found. {tool_hint('cargo')}\n")

        cmd = [cargo]
        if options.get("toolchain"):
            cmd.append(f"+{options['toolchain']}")
        cmd.append(options["command"])
        # Split args string into list, handling quoted strings
        cmd.extend(shlex.split(options.get("args", "")))

        return run_process(cmd, context, cwd=options.get("working-directory"))
