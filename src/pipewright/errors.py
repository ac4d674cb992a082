# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence


class PipewrightError(Exception):
    """Base class for every error raised by pipewright."""


# ----------------------------------------------------------------------
# Definition errors (fatal at parse time, no Run is created)
# ----------------------------------------------------------------------

class ValidationError(PipewrightError):
    """A workflow definition was rejected."""


class InvalidDefinition(ValidationError):
    """The raw document does not have the shape of a workflow."""

    def __init__(self, message: str, *, where: str | None = None):
        self.where = where
        super().__init__(f"{where}: {message}" if where else message)


class DuplicateJobName(ValidationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate job name: {name!r}")


class UnknownDependency(ValidationError):
    def __init__(self, job: str, dependency: str, known: Sequence[str] = ()):
        self.job = job
        self.dependency = dependency
        self.known = tuple(known)
        super().__init__(
            f"Job {job!r} needs missing job {dependency!r}. "
            f"Known jobs: {sorted(self.known)}"
        )


class CyclicDependency(ValidationError):
    def __init__(self, cycle: Sequence[str]):
        # cycle is closed: first and last entries are the same job
        self.cycle = tuple(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class WorkflowLoadError(PipewrightError):
    """A workflow file could not be read or evaluated."""


# ----------------------------------------------------------------------
# Runtime errors (attached to a job or step, never fatal to the run)
# ----------------------------------------------------------------------

@dataclass
class ProvisioningError(PipewrightError):
    """
    The environment for a job could not be acquired.

    Carries enough context for a clean report line without a traceback.
    """
    job: str
    message: str
    details: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        lines = [f"provisioning failed: {self.message}", f"job={self.job}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ActionError(PipewrightError):
    """An action could not be resolved or refused its parameters."""


class ActionNotFound(ActionError):
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Unknown action: {identifier!r}")


class InvalidParameters(ActionError):
    def __init__(self, action: str, problems: Sequence[str]):
        self.action = action
        self.problems = tuple(problems)
        super().__init__(f"Invalid parameters for {action!r}: " + "; ".join(self.problems))


class CancellationError(PipewrightError):
    """Raised by an action that noticed the run was cancelled. Not a failure."""
