# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

DEFAULT_WORKFLOW = "pipewright_workflow.py"
DEFAULT_OUTPUT_TAIL = 4000


@dataclass(frozen=True)
class Settings:
    """
    Engine configuration, read from PIPEWRIGHT_* environment variables.

    CLI options are applied on top with `with_overrides`.
    """
    workflow: Optional[str] = None
    max_workers: Optional[int] = None          # None -> cpu_count - 1
    workspace_root: Optional[Path] = None      # None -> system temp dir
    source_root: Optional[Path] = None         # repository checked out by actions/checkout
    runner_labels: Optional[FrozenSet[str]] = None  # None -> accept any runs-on label
    output_tail: int = DEFAULT_OUTPUT_TAIL
    keep_workspaces: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        labels = env.get("PIPEWRIGHT_RUNNER_LABELS")
        return cls(
            workflow=env.get("PIPEWRIGHT_WORKFLOW") or None,
            max_workers=_int(env, "PIPEWRIGHT_MAX_WORKERS"),
            workspace_root=_path(env, "PIPEWRIGHT_WORKSPACE_ROOT"),
            source_root=_path(env, "PIPEWRIGHT_SOURCE_ROOT"),
            runner_labels=frozenset(l.strip() for l in labels.split(",") if l.strip()) if labels else None,
            output_tail=_int(env, "PIPEWRIGHT_OUTPUT_TAIL") or DEFAULT_OUTPUT_TAIL,
            keep_workspaces=env.get("PIPEWRIGHT_KEEP_WORKSPACES", "").lower() in ("1", "true", "yes"),
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Replace fields whose override is not None."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _int(env: Mapping[str, str], key: str) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{key} must be at least 1, got {value}")
    return value


def _path(env: Mapping[str, str], key: str) -> Optional[Path]:
    raw = env.get(key)
    return Path(raw).expanduser() if raw else None
