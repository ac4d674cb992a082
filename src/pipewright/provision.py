# provision.py
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol

from .errors import ProvisioningError
from .model import JobSpec

logger = logging.getLogger(__name__)


TOOL_HINTS = {
    "cargo": "Install Rust with rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


def tool_hint(tool: str) -> str:
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


@dataclass
class EnvironmentContext:
    """
    Everything a job's actions may touch.

    One context per job; actions may update `env` so later steps of the same
    job see the change (e.g. a selected toolchain). Never shared between jobs.
    """
    job: str
    workspace: Path
    env: Dict[str, str]
    source_root: Optional[Path] = None
    runs_on: Optional[str] = None
    released: bool = field(default=False, repr=False)

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool, path=self.env.get("PATH"))


class EnvironmentProvisioner(Protocol):
    def acquire(self, job: JobSpec) -> EnvironmentContext: ...

    def release(self, context: EnvironmentContext) -> None: ...


class LocalProvisioner:
    """
    Runs jobs on this machine, each in its own temporary workspace.

    acquire():
      - checks the job's runner label (if `labels` is configured)
      - checks every `requires` tool is on PATH
      - creates <workspace_root>/<job>-XXXX
      - builds env = os.environ + workflow env + job env
    release() removes the workspace and is safe to call twice.
    """

    def __init__(
        self,
        workspace_root: str | Path | None = None,
        *,
        source_root: str | Path | None = None,
        labels: Iterable[str] | None = None,
        base_env: Mapping[str, str] | None = None,
        keep_workspaces: bool = False,
    ):
        self.workspace_root = Path(workspace_root) if workspace_root else None
        self.source_root = Path(source_root).resolve() if source_root else None
        self.labels = frozenset(labels) if labels is not None else None
        self.base_env = dict(base_env or {})
        self.keep_workspaces = keep_workspaces

    def acquire(self, job: JobSpec) -> EnvironmentContext:
        if self.labels is not None and job.runs_on and job.runs_on not in self.labels:
            raise ProvisioningError(
                job=job.name,
                message=f"no runner for label {job.runs_on!r}",
                details={"available": ",".join(sorted(self.labels))},
            )

        env = os.environ.copy()
        env.update(self.base_env)
        env.update(job.env)

        missing = [t for t in job.requires if shutil.which(t, path=env.get("PATH")) is None]
        if missing:
            raise ProvisioningError(
                job=job.name,
                message=f"required tool(s) not found: {', '.join(missing)}",
                details={"hint": " ".join(tool_hint(t) for t in missing)},
            )

        if self.workspace_root is not None:
            self.workspace_root.mkdir(parents=True, exist_ok=True)
        try:
            workspace = Path(tempfile.mkdtemp(
                prefix=f"{_safe(job.name)}-",
                dir=str(self.workspace_root) if self.workspace_root else None,
            ))
        except OSError as e:
            raise ProvisioningError(
                job=job.name,
                message=f"could not create workspace: {e}",
            ) from e

        env["PIPEWRIGHT_WORKSPACE"] = str(workspace)
        env["PIPEWRIGHT_JOB"] = job.name
        logger.debug("acquired workspace %s for job %s", workspace, job.name)
        return EnvironmentContext(
            job=job.name,
            workspace=workspace,
            env=env,
            source_root=self.source_root,
            runs_on=job.runs_on,
        )

    def release(self, context: EnvironmentContext) -> None:
        if context.released:
            return
        context.released = True
        if self.keep_workspaces:
            logger.debug("keeping workspace %s", context.workspace)
            return
        shutil.rmtree(context.workspace, ignore_errors=True)
        logger.debug("released workspace %s for job %s", context.workspace, context.job)


def _safe(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name) or "job"
