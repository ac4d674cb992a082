# git.py
# Small, focused wrapper around the Git CLI.
# The checkout action and the CLI's trigger context go through here, so the
# rest of the codebase never calls subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Mapping, Optional


class GitError(RuntimeError):
    """A git command exited non-zero (stderr is kept in the message)."""


def _git(args: list[str], cwd: Optional[str | Path] = None, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Raises:
        GitError: git exited non-zero.
        FileNotFoundError: git is not installed.
    """
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        env=dict(env) if env is not None else None,
        text=True,   # return output as str instead of bytes
        capture_output=True,
    )
    if proc.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {proc.stderr.strip()}")

    # Strip trailing newlines so callers can do clean string comparisons
    return proc.stdout.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """
    Return the absolute path to the root of the Git repository containing `cwd`.

    Git is the source of truth here rather than guessing from the filesystem.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA of HEAD. Used as the `sha` of locally triggered runs."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Return the current branch name, or the HEAD SHA when detached.
    """
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return head_sha(cwd)
    return ref


def clone(
    source: str | Path,
    dest: str | Path,
    *,
    ref: Optional[str] = None,
    depth: Optional[int] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Path:
    """
    Clone `source` (a path or URL) into `dest` and check out `ref`.

    Local sources are cloned with hardlinks (`--local`), which is cheap enough
    to do once per job.
    """
    args = ["clone", "--quiet"]
    if Path(str(source)).exists():
        args.append("--local")
    if depth:
        args.extend(["--depth", str(depth)])
    args.extend([str(source), str(dest)])
    _git(args, env=env)

    if ref:
        _git(["checkout", "--quiet", ref], cwd=dest, env=env)
    return Path(dest)


def update_submodules(repo: str | Path, *, recursive: bool = False, env: Optional[Mapping[str, str]] = None) -> None:
    args = ["submodule", "update", "--init"]
    if recursive:
        args.append("--recursive")
    _git(args, cwd=repo, env=env)
