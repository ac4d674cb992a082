from .dsl import job, sh, uses, wf, JobBuilder, build, checkout_step, toolchain_step, cargo_step
from .engine import Engine
from .loader import load_document, load_workflow, parse
from .model import JobSpec, StepSpec, WorkflowDefinition, JobStatus, StepStatus, RunStatus
from .report import RunReport, summarize

__all__ = [
    "job", "sh", "uses", "wf", "JobBuilder", "build",
    "checkout_step", "toolchain_step", "cargo_step",
    "Engine", "load_document", "load_workflow", "parse", "summarize",
    "JobSpec", "StepSpec", "WorkflowDefinition", "RunReport",
    "JobStatus", "StepStatus", "RunStatus",
]
