# triggers.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .model import Run, TriggerEvent, WorkflowDefinition

if TYPE_CHECKING:
    from .engine import Engine


def matches(definition: WorkflowDefinition, event: TriggerEvent | str) -> bool:
    """Exact membership of the event kind in the definition's triggers. No pattern matching."""
    kind = event.kind if isinstance(event, TriggerEvent) else event
    return kind in definition.triggers


def on_event(
    engine: "Engine",
    definition: WorkflowDefinition,
    kind: str,
    context: Optional[Mapping[str, Any]] = None,
) -> Optional[Run]:
    """
    Start a run of `definition` if it declares `kind` as a trigger.

    Returns the (not yet executed) Run, or None when the event does not apply.
    """
    event = TriggerEvent(kind=kind, context=dict(context or {}))
    if not matches(definition, event):
        return None
    return engine.start(definition, event)
