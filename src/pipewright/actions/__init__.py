# actions/__init__.py
"""
Action resolution: map a step's action identifier to something runnable.

Identifiers are looked up without their `@version` suffix, first by exact
name, then through an alias table, so "actions-rs/cargo@v1" and "cargo"
resolve to the same built-in.
"""
from __future__ import annotations

import threading
from typing import Dict, Mapping, Optional

from ..errors import ActionNotFound
from .base import Action, ActionResult, run_process
from .cargo import CargoAction, cargo_step
from .checkout import CheckoutAction, checkout_step
from .shell import RunAction, sh
from .toolchain import ToolchainAction, toolchain_step

BUILTIN_ALIASES = {
    "actions/checkout": "checkout",
    "actions-rs/toolchain": "toolchain",
    "dtolnay/rust-toolchain": "toolchain",
    "actions-rs/cargo": "cargo",
}


class ActionResolver:
    """Registry of actions. Safe to share between concurrently running jobs."""

    def __init__(self, actions: Optional[Mapping[str, Action]] = None, aliases: Optional[Mapping[str, str]] = None):
        self._actions: Dict[str, Action] = dict(actions or {})
        self._aliases: Dict[str, str] = dict(aliases or {})
        self._lock = threading.Lock()

    def register(self, action: Action, *, name: str | None = None, aliases: tuple[str, ...] = ()) -> Action:
        key = name or action.name
        if not key:
            raise ValueError("action has no name")
        with self._lock:
            self._actions[key] = action
            for alias in aliases:
                self._aliases[alias] = key
        return action

    def resolve(self, identifier: str) -> Action:
        base = identifier.split("@", 1)[0].strip()
        with self._lock:
            action = self._actions.get(base)
            if action is None and base in self._aliases:
                action = self._actions.get(self._aliases[base])
        if action is None:
            raise ActionNotFound(identifier)
        return action

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._actions)


def default_resolver() -> ActionResolver:
    """A resolver with the built-in actions registered."""
    resolver = ActionResolver(aliases=BUILTIN_ALIASES)
    for action in (RunAction(), CheckoutAction(), ToolchainAction(), CargoAction()):
        resolver.register(action)
    return resolver


__all__ = [
    "Action",
    "ActionResult",
    "ActionResolver",
    "default_resolver",
    "run_process",
    "sh",
    "checkout_step",
    "toolchain_step",
    "cargo_step",
]
