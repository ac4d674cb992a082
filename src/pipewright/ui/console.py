"""Console output formatting utilities for pipewright."""

from __future__ import annotations

import sys
import threading
from typing import List, Optional

from ..model import JobExecution, JobSpec, JobStatus, Run, StepResult, StepStatus
from ..report import RunReport

_STATUS_LABELS = {
    JobStatus.SUCCEEDED: "SUCCESS",
    JobStatus.FAILED: "FAILED",
    JobStatus.SKIPPED: "SKIPPED",
}

_STEP_MARKS = {
    StepStatus.SUCCEEDED: "ok",
    StepStatus.FAILED: "FAILED",
    StepStatus.NOT_RUN: "not run",
}


class Console:
    """Centralized console output formatting. Also a RunObserver for live progress."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where regular output goes (defaults to stdout at call time)
        """
        self.debug = debug
        self._stream = stream
        self._lock = threading.RLock()

    def _print(self, *lines: str, err: bool = False) -> None:
        out = sys.stderr if err else (self._stream or sys.stdout)
        # jobs report from several threads; keep each block together
        with self._lock:
            for line in lines:
                print(line, file=out)

    def print_run_started(self, workflow: str, event: Optional[str], job_count: int) -> None:
        """Print run start information."""
        self._print(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Event: {event or '-'}",
            f"Jobs: {job_count}",
            "",
        )

    # ------------------------------------------------------------------
    # RunObserver
    # ------------------------------------------------------------------

    def job_started(self, run: Run, job: JobExecution) -> None:
        self._print(f"JOB STARTED: {job.spec.display_name}")

    def step_finished(self, run: Run, job: JobSpec, step: StepResult) -> None:
        if step.status is StepStatus.SUCCEEDED:
            self._print(f"[{job.name}] STEP: {step.name} ({step.duration:.1f}s)")
            return
        lines = [f"[{job.name}] STEP FAILED: {step.name}"]
        if step.exit_code is not None:
            lines.append(f"Exit code: {step.exit_code}")
        if step.reason:
            lines.append(f"Error: {step.reason}")
        if step.output:
            tail = step.output if self.debug else "\n".join(step.output.rstrip().splitlines()[-20:])
            lines.extend(f"  | {l}" for l in tail.splitlines())
        self._print(*lines)

    def job_finished(self, run: Run, job: JobExecution) -> None:
        label = _STATUS_LABELS.get(job.status, job.status.value.upper())
        if job.status is JobStatus.SKIPPED:
            self._print(f"JOB SKIPPED: {job.spec.display_name} ({job.diagnostic or 'skipped'})")
        elif job.status is JobStatus.FAILED and job.diagnostic:
            self._print(f"JOB FAILED: {job.spec.display_name}", f"Reason: {job.diagnostic.splitlines()[0]}")
        else:
            self._print(f"JOB {label}: {job.spec.display_name}")

    def run_finished(self, run: Run) -> None:
        self.print_debug(f"run {run.id} finished with {run.status.value}")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def print_report(self, report: RunReport) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS" + (" (provisional)" if report.provisional else ""), "=" * 40]
        for job in report.jobs:
            status = _STATUS_LABELS.get(job.status, job.status.value.upper())
            lines.append(f"  {job.name}: {status}")
            failed = job.failed_step
            if failed is not None:
                lines.append(f"    failed step: {failed.name} ({failed.reason})")
            elif job.status is not JobStatus.SUCCEEDED and job.diagnostic:
                lines.append(f"    {job.diagnostic.splitlines()[0]}")
            if self.debug:
                for step in job.steps:
                    lines.append(f"    - {step.name}: {_STEP_MARKS[step.status]}")
        for diagnostic in report.diagnostics:
            lines.append(f"  ! {diagnostic}")
        if report.cancelled:
            lines.append("  (run was cancelled)")
        lines.append(f"OVERALL: {report.overall.value.upper()}")
        self._print(*lines)

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the execution plan, one stage per line."""
        lines = []
        for idx, level in enumerate(levels):
            lines.append(f"=== Stage {idx + 1}: {', '.join(level)} ===")
        self._print(*lines)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._print("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
