# sequencer.py
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterator, List, Optional

from .actions import ActionResolver
from .errors import ActionError, CancellationError, ProvisioningError
from .model import JobOutcome, JobSpec, JobStatus, StepResult, StepSpec, StepStatus
from .provision import EnvironmentContext, EnvironmentProvisioner

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TAIL = 4000

StepCallback = Callable[[JobSpec, StepResult], None]


class StepSequencer:
    """
    Runs one job's steps, in order, against a freshly provisioned environment.

    Fail-fast: the first failing step ends the job; the remaining steps are
    recorded as NOT_RUN. A non-zero exit code and an action fault (unknown
    action, bad parameters, exception) are both step failures; only the
    recorded `failure` / `reason` tell them apart.

    The sequencer never touches a JobExecution: it returns a JobOutcome and
    the scheduler applies it.
    """

    def __init__(
        self,
        resolver: ActionResolver,
        provisioner: EnvironmentProvisioner,
        *,
        output_tail: int = DEFAULT_OUTPUT_TAIL,
    ):
        self.resolver = resolver
        self.provisioner = provisioner
        self.output_tail = output_tail

    def run(
        self,
        job: JobSpec,
        cancel: Optional[threading.Event] = None,
        on_step: Optional[StepCallback] = None,
    ) -> JobOutcome:
        cancel = cancel or threading.Event()
        started = time.time()

        if cancel.is_set():
            return JobOutcome.untouched(job, JobStatus.SKIPPED, "cancelled before start")

        try:
            with self._provisioned(job) as context:
                results, status, diagnostic = self._run_steps(job, context, cancel, on_step)
        except ProvisioningError as e:
            logger.warning("provisioning failed for job %s: %s", job.name, e.message)
            outcome = JobOutcome.untouched(job, JobStatus.FAILED, str(e))
            return replace(outcome, started_at=started, finished_at=time.time())

        return JobOutcome(
            status=status,
            steps=tuple(results),
            diagnostic=diagnostic,
            started_at=started,
            finished_at=time.time(),
        )

    @contextmanager
    def _provisioned(self, job: JobSpec) -> Iterator[EnvironmentContext]:
        context = self.provisioner.acquire(job)
        try:
            yield context
        finally:
            try:
                self.provisioner.release(context)
            except Exception:
                # a failed cleanup must not change the job's outcome
                logger.exception("releasing environment for job %s failed", job.name)

    def _run_steps(
        self,
        job: JobSpec,
        context: EnvironmentContext,
        cancel: threading.Event,
        on_step: Optional[StepCallback],
    ):
        results: List[StepResult] = []

        for index, step in enumerate(job.steps):
            if cancel.is_set():
                results.extend(StepResult.not_run(i, s) for i, s in enumerate(job.steps) if i >= index)
                return results, JobStatus.SKIPPED, f"cancelled before step '{step.name}'"

            result = self._run_step(job, index, step, context)
            if result is None:
                # action raised CancellationError
                results.extend(StepResult.not_run(i, s) for i, s in enumerate(job.steps) if i >= index)
                return results, JobStatus.SKIPPED, f"cancelled during step '{step.name}'"

            results.append(result)
            if on_step is not None:
                on_step(job, result)

            if result.status is StepStatus.FAILED:
                results.extend(StepResult.not_run(i, s) for i, s in enumerate(job.steps) if i > index)
                return results, JobStatus.FAILED, f"step '{step.name}' failed: {result.reason}"

        return results, JobStatus.SUCCEEDED, None

    def _run_step(self, job: JobSpec, index: int, step: StepSpec, context: EnvironmentContext) -> StepResult | None:
        logger.info("[%s] > %s", job.name, step.name)
        start = time.monotonic()
        try:
            action = self.resolver.resolve(step.action)
            result = action.invoke(step.params, context)
        except CancellationError:
            return None
        except ActionError as e:
            return self._failed(index, step, start, reason=str(e))
        except Exception as e:
            logger.debug("step %r of job %s raised", step.name, job.name, exc_info=True)
            return self._failed(index, step, start, reason=f"{type(e).__name__}: {e}")

        duration = time.monotonic() - start
        output = result.output[-self.output_tail:] if self.output_tail else ""
        if result.ok:
            return StepResult(
                index=index,
                name=step.name,
                action=step.action,
                status=StepStatus.SUCCEEDED,
                exit_code=result.exit_code,
                output=output,
                duration=duration,
            )
        return StepResult(
            index=index,
            name=step.name,
            action=step.action,
            status=StepStatus.FAILED,
            exit_code=result.exit_code,
            failure="exit",
            reason=f"exit code {result.exit_code}",
            output=output,
            duration=duration,
        )

    def _failed(self, index: int, step: StepSpec, start: float, *, reason: str) -> StepResult:
        return StepResult(
            index=index,
            name=step.name,
            action=step.action,
            status=StepStatus.FAILED,
            failure="error",
            reason=reason,
            duration=time.monotonic() - start,
        )
