# actions/checkout.py
from __future__ import annotations

from typing import Any, Dict

from .. import git
from ..model import StepSpec
from ..provision import EnvironmentContext
from .base import Action, ActionResult, source_path


def checkout_step(name: str = "Checkout", *, submodules: bool = False, ref: str | None = None) -> StepSpec:
    params: Dict[str, Any] = {}
    if submodules:
        params["submodules"] = "true"
    if ref:
        params["ref"] = ref
    return StepSpec(name=name, action="actions/checkout@v2", params=params)


class CheckoutAction(Action):
    """
    Clone the source repository into the job workspace.

    `repository` defaults to the provisioner's source root, `path` is relative
    to the workspace. `submodules` initializes submodules ("recursive" for
    nested ones).
    """
    name = "checkout"
    options = {
        "repository": str,
        "ref": str,
        "path": str,
        "submodules": str,
        "fetch-depth": int,
    }

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        source = options.get("repository") or source_path(context)
        dest = (context.workspace / options.get("path", ".")).resolve()
        if dest.exists() and any(dest.iterdir()):
            return ActionResult(exit_code=1, output=f"checkout target is not empty: {dest}\n")

        depth = options.get("fetch-depth") or None
        try:
            git.clone(source, dest, ref=options.get("ref"), depth=depth, env=context.env)
            lines = [f"checked out {source} into {dest}"]

            submodules = options.get("submodules", "false").lower()
            if submodules in ("true", "recursive"):
                git.update_submodules(dest, recursive=submodules == "recursive", env=context.env)
                lines.append("initialized submodules")
        except git.GitError as e:
            return ActionResult(exit_code=1, output=f"{e}\n")

        return ActionResult(exit_code=0, output="\n".join(lines) + "\n")
