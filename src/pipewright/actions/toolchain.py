# actions/toolchain.py
from __future__ import annotations

from typing import Any, Dict, Sequence

from ..model import StepSpec
from ..provision import EnvironmentContext, tool_hint
from .base import Action, ActionResult, run_process


def toolchain_step(
    name: str = "Setup Rust",
    toolchain: str = "stable",
    *,
    components: Sequence[str] = (),
    profile: str = "minimal",
    override: bool = True,
) -> StepSpec:
    params: Dict[str, Any] = {"profile": profile, "toolchain": toolchain, "override": override}
    if components:
        params["components"] = ", ".join(components)
    return StepSpec(name=name, action="actions-rs/toolchain@v1", params=params)


class ToolchainAction(Action):
    """
    Select a Rust toolchain for the rest of the job.

    Installing toolchains is the runner image's business; this action checks
    that rustup is there, records the selection in the job environment
    (RUSTUP_TOOLCHAIN) so later cargo steps pick it up, and reports what
    rustup knows about it.
    """
    name = "toolchain"
    options = {
        "toolchain": str,
        "profile": str,
        "override": bool,
        "default": bool,
        "components": str,
        "target": str,
    }
    required = frozenset({"toolchain"})

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        rustup = context.which("rustup")
        if rustup is None:
            return ActionResult(exit_code=127, output=f"rustup not found. {tool_hint('rustup')}\n")

        toolchain = options["toolchain"]
        if options.get("override", False) or options.get("default", False):
            context.env["RUSTUP_TOOLCHAIN"] = toolchain

        return run_process([rustup, "run", toolchain, "rustc", "--version"], context)
