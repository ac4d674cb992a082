"""
Shared fixtures.

Engine-level tests run against in-process fakes: a scripted action whose
exit code / delay / output come from the step params, and a provisioner
that hands out plain contexts and records acquire/release calls. Tests of
the real built-in actions use LocalProvisioner with tmp_path.
"""
from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Dict, List

import pytest

from pipewright.actions import Action, ActionResolver, ActionResult
from pipewright.engine import Engine
from pipewright.errors import CancellationError, ProvisioningError
from pipewright.model import JobSpec, StepSpec
from pipewright.provision import EnvironmentContext
from pipewright.sequencer import StepSequencer

FIXTURES = Path(__file__).parent / "fixtures"


# -------------------------------------------------------------------------
# Fake actions
# -------------------------------------------------------------------------

class ScriptedAction(Action):
    """Exits with `exit`, after sleeping `sleep` seconds. Tracks concurrency."""

    name = "fake"
    options = {"exit": int, "sleep": float, "output": str}

    def __init__(self):
        self.calls: List[str] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def execute(self, options: Dict[str, Any], context: EnvironmentContext) -> ActionResult:
        with self._lock:
            self.calls.append(context.job)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            time.sleep(options.get("sleep", 0))
        finally:
            with self._lock:
                self.running -= 1
        return ActionResult(exit_code=options.get("exit", 0), output=options.get("output", ""))


class BoomAction(Action):
    name = "boom"

    def execute(self, options, context):
        raise RuntimeError("boom")


class CancelAction(Action):
    name = "cancel"

    def execute(self, options, context):
        raise CancellationError("stopped")


def step(name: str, *, exit: int = 0, sleep: float = 0, output: str = "") -> StepSpec:
    params: Dict[str, Any] = {"exit": exit}
    if sleep:
        params["sleep"] = sleep
    if output:
        params["output"] = output
    return StepSpec(name=name, action="fake", params=params)


# -------------------------------------------------------------------------
# Fake provisioner
# -------------------------------------------------------------------------

class FakeProvisioner:
    def __init__(self, root: Path, fail_for: tuple[str, ...] = ()):
        self.root = root
        self.fail_for = set(fail_for)
        self.acquired: List[str] = []
        self.released: List[str] = []
        self.envs: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def acquire(self, job: JobSpec) -> EnvironmentContext:
        if job.name in self.fail_for:
            raise ProvisioningError(job=job.name, message="no capacity")
        with self._lock:
            self.acquired.append(job.name)
            self.envs[job.name] = dict(job.env)
        return EnvironmentContext(job=job.name, workspace=self.root / job.name, env=dict(job.env))

    def release(self, context: EnvironmentContext) -> None:
        with self._lock:
            self.released.append(context.job)


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def scripted() -> ScriptedAction:
    return ScriptedAction()


@pytest.fixture
def resolver(scripted) -> ActionResolver:
    r = ActionResolver()
    r.register(scripted)
    r.register(BoomAction())
    r.register(CancelAction())
    return r


@pytest.fixture
def provisioner(tmp_path) -> FakeProvisioner:
    return FakeProvisioner(tmp_path)


@pytest.fixture
def sequencer(resolver, provisioner) -> StepSequencer:
    return StepSequencer(resolver, provisioner)


@pytest.fixture
def engine(resolver, provisioner) -> Engine:
    return Engine(resolver, provisioner, max_workers=4)
