"""Tests for running one job's steps."""

import threading

from pipewright.model import JobSpec, JobStatus, StepSpec, StepStatus
from pipewright.sequencer import StepSequencer

from conftest import FakeProvisioner, step


def _job(*steps, name="j"):
    return JobSpec(name=name, steps=tuple(steps))


def test_all_steps_succeed(sequencer, provisioner):
    outcome = sequencer.run(_job(step("one"), step("two")))

    assert outcome.status is JobStatus.SUCCEEDED
    assert [s.status for s in outcome.steps] == [StepStatus.SUCCEEDED, StepStatus.SUCCEEDED]
    assert [s.index for s in outcome.steps] == [0, 1]
    assert outcome.diagnostic is None
    assert outcome.started_at is not None and outcome.finished_at >= outcome.started_at
    assert provisioner.acquired == ["j"]
    assert provisioner.released == ["j"]


def test_fail_fast_marks_remaining_steps_not_run(sequencer, scripted):
    outcome = sequencer.run(_job(step("one"), step("two", exit=2), step("three")))

    assert outcome.status is JobStatus.FAILED
    assert [s.status for s in outcome.steps] == [
        StepStatus.SUCCEEDED,
        StepStatus.FAILED,
        StepStatus.NOT_RUN,
    ]
    failed = outcome.steps[1]
    assert failed.exit_code == 2
    assert failed.failure == "exit"
    assert failed.reason == "exit code 2"
    assert outcome.diagnostic == "step 'two' failed: exit code 2"
    # third step never reached the action
    assert len(scripted.calls) == 2


def test_unknown_action_is_an_error_failure(sequencer):
    outcome = sequencer.run(_job(StepSpec(name="x", action="does/not-exist@v3"), step("after")))

    assert outcome.status is JobStatus.FAILED
    first = outcome.steps[0]
    assert first.failure == "error"
    assert first.exit_code is None
    assert "does/not-exist@v3" in first.reason
    assert outcome.steps[1].status is StepStatus.NOT_RUN


def test_invalid_parameters_fail_the_step(sequencer):
    outcome = sequencer.run(_job(StepSpec(name="x", action="fake", params={"colour": "red"})))

    assert outcome.status is JobStatus.FAILED
    assert outcome.steps[0].failure == "error"
    assert "unknown option 'colour'" in outcome.steps[0].reason


def test_action_exception_fails_the_step_and_releases(sequencer, provisioner):
    outcome = sequencer.run(_job(StepSpec(name="x", action="boom")))

    assert outcome.status is JobStatus.FAILED
    assert outcome.steps[0].reason == "RuntimeError: boom"
    assert provisioner.released == ["j"]


def test_cancellation_from_an_action_skips_the_job(sequencer):
    outcome = sequencer.run(_job(step("one"), StepSpec(name="stop", action="cancel"), step("three")))

    assert outcome.status is JobStatus.SKIPPED
    assert [s.status for s in outcome.steps] == [
        StepStatus.SUCCEEDED,
        StepStatus.NOT_RUN,
        StepStatus.NOT_RUN,
    ]


def test_cancel_before_start_does_not_provision(sequencer, provisioner):
    cancel = threading.Event()
    cancel.set()
    outcome = sequencer.run(_job(step("one")), cancel)

    assert outcome.status is JobStatus.SKIPPED
    assert outcome.steps[0].status is StepStatus.NOT_RUN
    assert provisioner.acquired == []


def test_cancel_between_steps(sequencer):
    cancel = threading.Event()

    def on_step(job, result):
        cancel.set()

    outcome = sequencer.run(_job(step("one"), step("two")), cancel, on_step)

    assert outcome.status is JobStatus.SKIPPED
    assert [s.status for s in outcome.steps] == [StepStatus.SUCCEEDED, StepStatus.NOT_RUN]
    assert "two" in outcome.diagnostic


def test_on_step_sees_executed_steps_only(sequencer):
    seen = []
    sequencer.run(_job(step("one"), step("two", exit=1), step("three")), on_step=lambda j, r: seen.append(r.name))
    assert seen == ["one", "two"]


def test_provisioning_failure_fails_job_with_no_steps_run(resolver, tmp_path):
    provisioner = FakeProvisioner(tmp_path, fail_for=("j",))
    outcome = StepSequencer(resolver, provisioner).run(_job(step("one"), step("two")))

    assert outcome.status is JobStatus.FAILED
    assert all(s.status is StepStatus.NOT_RUN for s in outcome.steps)
    assert "no capacity" in outcome.diagnostic
    assert provisioner.released == []


def test_output_is_truncated_to_its_tail(resolver, provisioner):
    sequencer = StepSequencer(resolver, provisioner, output_tail=5)
    outcome = sequencer.run(_job(step("one", output="abcdefghij")))
    assert outcome.steps[0].output == "fghij"
