"""Tests for the scheduler, driven through the Engine with fake actions."""

import gc
import threading

import pytest

from pipewright import dag
from pipewright.dsl import job, wf
from pipewright.engine import Engine
from pipewright.model import JobStatus, Run, RunStatus, StepSpec, StepStatus
from pipewright.scheduler import Scheduler

from conftest import FakeProvisioner, step


class Recorder:
    """Observer keeping an ordered event log."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def job_started(self, run, execution):
        with self._lock:
            self.events.append(("start", execution.name))

    def step_finished(self, run, spec, result):
        with self._lock:
            self.events.append(("step", spec.name, result.name))

    def job_finished(self, run, execution):
        with self._lock:
            self.events.append(("finish", execution.name, execution.status))

    def run_finished(self, run):
        with self._lock:
            self.events.append(("run", run.status))

    def finished(self):
        return {e[1]: e[2] for e in self.events if e[0] == "finish"}


# -------------------------------------------------------------------------
# Concrete scenarios
# -------------------------------------------------------------------------

def test_independent_jobs_all_run(engine, scripted):
    definition = wf(*(job(n, step("s")) for n in ("fmt", "check", "clippy", "build", "test")))
    report = engine.run(definition)

    assert report.overall is RunStatus.SUCCEEDED
    assert not report.provisional
    assert sorted(scripted.calls) == ["build", "check", "clippy", "fmt", "test"]
    assert all(j.status is JobStatus.SUCCEEDED for j in report.jobs)


def test_failed_job_skips_dependents_but_not_siblings(engine, scripted):
    definition = wf(
        job("check", step("compile", exit=1)),
        job("build", step("b1"), step("b2"), needs=["check"]),
        job("fmt", step("f")),
        job("clippy", step("c")),
    )
    report = engine.run(definition)

    assert report.overall is RunStatus.FAILED
    assert report.job("check").status is JobStatus.FAILED
    assert report.job("fmt").status is JobStatus.SUCCEEDED
    assert report.job("clippy").status is JobStatus.SUCCEEDED

    build = report.job("build")
    assert build.status is JobStatus.SKIPPED
    assert [s.status for s in build.steps] == [StepStatus.NOT_RUN, StepStatus.NOT_RUN]
    assert "check" in build.diagnostic
    assert "build" not in scripted.calls
    assert [j.name for j in report.failed_jobs] == ["check"]


def test_dependents_wait_for_all_needs(engine):
    recorder = Recorder()
    engine.observers.append(recorder)
    definition = wf(
        job("a", step("s")),
        job("b", step("s", sleep=0.05), needs=["a"]),
        job("c", step("s"), needs=["a"]),
        job("d", step("s"), needs=["b", "c"]),
    )
    report = engine.run(definition)

    assert report.overall is RunStatus.SUCCEEDED
    order = [e for e in recorder.events if e[0] in ("start", "finish")]
    position = {(e[0], e[1]): i for i, e in enumerate(order)}
    assert position[("finish", "a")] < position[("start", "b")]
    assert position[("finish", "a")] < position[("start", "c")]
    assert position[("finish", "b")] < position[("start", "d")]
    assert position[("finish", "c")] < position[("start", "d")]
    assert recorder.events[-1] == ("run", RunStatus.SUCCEEDED)


def test_concurrency_ceiling_is_respected(resolver, provisioner, scripted):
    engine = Engine(resolver, provisioner, max_workers=2)
    definition = wf(*(job(f"j{i}", step("s", sleep=0.1)) for i in range(5)))
    report = engine.run(definition)

    assert report.overall is RunStatus.SUCCEEDED
    assert scripted.max_running == 2
    assert len(scripted.calls) == 5


def test_ceiling_of_one_runs_jobs_serially(resolver, provisioner, scripted):
    engine = Engine(resolver, provisioner)
    definition = wf(*(job(f"j{i}", step("s", sleep=0.02)) for i in range(3)))
    engine.run(definition, max_workers=1)
    assert scripted.max_running == 1


# -------------------------------------------------------------------------
# Propagation
# -------------------------------------------------------------------------

def test_skip_cascades_transitively(engine):
    definition = wf(
        job("a", step("s", exit=1)),
        job("b", step("s"), needs=["a"]),
        job("c", step("s"), needs=["b"]),
        job("other", step("s")),
    )
    report = engine.run(definition)

    assert report.job("b").status is JobStatus.SKIPPED
    assert report.job("c").status is JobStatus.SKIPPED
    assert "'b' skipped" in report.job("c").diagnostic
    assert report.job("other").status is JobStatus.SUCCEEDED


def test_dependent_skipped_when_one_of_several_needs_fails(engine, scripted):
    definition = wf(
        job("ok", step("s", sleep=0.05)),
        job("bad", step("s", exit=3)),
        job("after", step("s"), needs=["ok", "bad"]),
    )
    report = engine.run(definition)

    assert report.job("after").status is JobStatus.SKIPPED
    assert report.job("ok").status is JobStatus.SUCCEEDED
    assert "after" not in scripted.calls


def test_job_without_steps_succeeds_without_provisioning(engine, provisioner):
    definition = wf(job("gate"), job("next", step("s"), needs=["gate"]))
    report = engine.run(definition)

    assert report.job("gate").status is JobStatus.SUCCEEDED
    assert report.job("next").status is JobStatus.SUCCEEDED
    assert provisioner.acquired == ["next"]


def test_provisioning_failure_is_isolated_to_its_job(resolver, tmp_path):
    provisioner = FakeProvisioner(tmp_path, fail_for=("b",))
    engine = Engine(resolver, provisioner, max_workers=3)
    definition = wf(
        job("a", step("s")),
        job("b", step("s1"), step("s2")),
        job("c", step("s")),
        job("d", step("s"), needs=["b"]),
    )
    report = engine.run(definition)

    b = report.job("b")
    assert b.status is JobStatus.FAILED
    assert all(s.status is StepStatus.NOT_RUN for s in b.steps)
    assert "provisioning failed" in b.diagnostic
    assert report.job("a").status is JobStatus.SUCCEEDED
    assert report.job("c").status is JobStatus.SUCCEEDED
    assert report.job("d").status is JobStatus.SKIPPED
    assert report.overall is RunStatus.FAILED


def test_every_acquired_environment_is_released(engine, provisioner):
    definition = wf(
        job("a", step("s")),
        job("b", StepSpec(name="boom", action="boom")),
        job("c", step("s", exit=4)),
        job("d", step("s"), needs=["a"]),
    )
    engine.run(definition)

    assert sorted(provisioner.acquired) == ["a", "b", "c", "d"]
    assert sorted(provisioner.released) == sorted(provisioner.acquired)


def test_workflow_env_reaches_the_provisioner(engine, provisioner):
    definition = wf(job("a", step("s"), env={"JOB": "1"}), env={"WF": "1"})
    engine.run(definition)
    assert provisioner.envs["a"] == {"WF": "1", "JOB": "1"}


def test_crashing_observer_does_not_break_the_run(engine):
    class Broken:
        def job_started(self, run, execution):
            raise RuntimeError("observer bug")

    engine.observers.append(Broken())
    report = engine.run(wf(job("a", step("s"))))
    assert report.overall is RunStatus.SUCCEEDED


# -------------------------------------------------------------------------
# Cancellation
# -------------------------------------------------------------------------

def test_cancel_mid_run_skips_everything_unfinished(resolver, provisioner, scripted):
    engine = Engine(resolver, provisioner, max_workers=1)
    definition = wf(
        job("a", step("first"), step("second")),
        job("b", step("s")),
        job("c", step("s"), needs=["a"]),
    )
    run = engine.start(definition)

    class CancelAfterFirstStep:
        def step_finished(self, run_, spec, result):
            engine.cancel(run.id)

    engine.observers.append(CancelAfterFirstStep())
    report = engine.execute(run)

    assert report.cancelled
    a = report.job("a")
    assert a.status is JobStatus.SKIPPED
    assert [s.status for s in a.steps] == [StepStatus.SUCCEEDED, StepStatus.NOT_RUN]
    assert report.job("b").status is JobStatus.SKIPPED
    assert report.job("c").status is JobStatus.SKIPPED
    assert scripted.calls == ["a"]
    # no job failed, so the run is not a failure
    assert report.overall is RunStatus.SUCCEEDED
    assert report.diagnostics == ("run cancelled, 2 job(s) not started",)


def test_cancel_before_execute(engine, provisioner):
    run = engine.start(wf(job("a", step("s")), job("b", step("s"), needs=["a"])))
    assert engine.cancel(run.id)

    report = engine.execute(run)

    assert report.cancelled
    assert {j.status for j in report.jobs} == {JobStatus.SKIPPED}
    assert provisioner.acquired == []


def test_cancel_reaching_a_dependent_counts_it_as_not_started(resolver, provisioner):
    engine = Engine(resolver, provisioner, max_workers=1)
    definition = wf(
        job("a", step("first"), step("second")),
        job("b", step("s"), needs=["a"]),
    )
    run = engine.start(definition)

    class CancelAfterFirstStep:
        def step_finished(self, run_, spec, result):
            engine.cancel(run.id)

    engine.observers.append(CancelAfterFirstStep())
    report = engine.execute(run)

    assert report.cancelled
    assert report.job("a").status is JobStatus.SKIPPED
    assert report.job("b").status is JobStatus.SKIPPED
    assert report.diagnostics == ("run cancelled, 1 job(s) not started",)


def test_cancel_after_every_job_finished_is_not_a_cancelled_run(engine):
    run = engine.start(wf(job("a", step("s"))))

    class CancelWhenDone:
        def job_finished(self, run_, execution):
            engine.cancel(run.id)

    engine.observers.append(CancelWhenDone())
    report = engine.execute(run)

    assert not report.cancelled
    assert report.diagnostics == ()
    assert report.job("a").status is JobStatus.SUCCEEDED


def test_started_run_that_is_never_executed_is_forgotten(engine):
    run_id = engine.start(wf(job("a", step("s")))).id
    gc.collect()

    assert engine.cancel(run_id) is False


def test_cancel_unknown_run(engine):
    assert engine.cancel("nope") is False


# -------------------------------------------------------------------------
# Scheduler directly
# -------------------------------------------------------------------------

def test_scheduler_rejects_zero_workers(sequencer):
    definition = wf(job("a"))
    run = Run(definition=definition, graph=dag.build(definition))
    with pytest.raises(ValueError):
        Scheduler(run, sequencer, max_workers=0)


def test_a_run_executes_only_once(sequencer):
    definition = wf(job("a", step("s")))
    run = Run(definition=definition, graph=dag.build(definition))
    Scheduler(run, sequencer, max_workers=1).run()

    assert run.status is RunStatus.SUCCEEDED
    assert run.finished_at is not None
    with pytest.raises(RuntimeError):
        Scheduler(run, sequencer, max_workers=1).run()
