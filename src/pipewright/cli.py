# cli.py
from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path

import click

from . import dag
from .engine import Engine
from .errors import PipewrightError, ValidationError, WorkflowLoadError
from .git import GitError, current_ref, head_sha, repo_root
from .loader import load_workflow
from .model import TriggerEvent
from .settings import DEFAULT_WORKFLOW, Settings
from .triggers import on_event
from .ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """
    Find workflow files in `directory`.

    Looks for pipewright_workflow.py, other *_workflow.py files and
    .github/workflows/*.yml documents.
    """
    workflow_files = []

    default_workflow = directory / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in directory.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    for pattern in ("*.yml", "*.yaml"):
        workflow_files.extend(directory.glob(f".github/workflows/{pattern}"))

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  pipewright run --workflow my_workflow.py",
            )
            sys.exit(EXIT_FAILED)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  pipewright run --workflow ci.yml",
        )
        sys.exit(EXIT_FAILED)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  pipewright run --workflow {workflow_files[0]}",
        )
        sys.exit(EXIT_FAILED)

    return workflow_files[0]


def _load(workflow_path: Path):
    """Load and validate, turning errors into console output + exit codes."""
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except ValidationError as e:
        console.print_error("Invalid workflow", f"{workflow_path}: {e}")
        sys.exit(EXIT_INVALID)
    except WorkflowLoadError as e:
        console.print_error("Failed to load workflow", str(e))
        sys.exit(EXIT_FAILED)


def _cancel_on_sigint(engine: Engine, run_id: str):
    """First Ctrl-C cancels the run gracefully, the second one aborts."""
    console = get_console()

    def handler(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling run (press Ctrl-C again to abort)...")
        engine.cancel(run_id)
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, handler)


def _event_context(source_root: Path | None) -> dict:
    """Best-effort sha/ref of the local checkout for the trigger event."""
    if source_root is None:
        return {}
    try:
        return {"sha": head_sha(source_root), "ref": current_ref(source_root)}
    except (GitError, FileNotFoundError):
        return {}


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """pipewright: run CI workflow definitions locally."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = Settings.from_env()
    except ValueError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_INVALID)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .json); discovered if omitted")
@click.option("--event", default="push", show_default=True, help="Trigger event kind")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Maximum number of jobs running at once")
@click.option("--job", "jobs", multiple=True, help="Only run this job (and what it needs); repeatable")
@click.option("--workspace-root", default=None, type=click.Path(file_okay=False, path_type=Path), help="Where job workspaces are created")
@click.option("--source-root", default=None, type=click.Path(file_okay=False, path_type=Path), help="Repository cloned by checkout steps (defaults to the git root)")
@click.option("--keep-workspaces", is_flag=True, default=False, help="Do not delete job workspaces")
@click.option("--json", "json_path", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Also write the run report as JSON")
@click.option("--force", is_flag=True, default=False, help="Run even if the workflow does not declare the event")
@click.pass_context
def run(ctx, workflow, event, workers, jobs, workspace_root, source_root, keep_workspaces, json_path, force):
    """Run a workflow."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    workflow_path = discover_workflow(workflow or settings.workflow)
    definition = _load(workflow_path)

    if jobs:
        try:
            definition = definition.subset(list(jobs))
        except KeyError as e:
            console.print_error("Unknown job", f"No job named {e.args[0]!r} in {workflow_path}",
                                details=[f"Jobs: {', '.join(definition.job_names())}"])
            sys.exit(EXIT_INVALID)

    if source_root is None and settings.source_root is None:
        try:
            source_root = repo_root()
        except (GitError, FileNotFoundError):
            source_root = Path(".").resolve()

    settings = settings.with_overrides(
        max_workers=workers,
        workspace_root=workspace_root,
        source_root=source_root,
        keep_workspaces=keep_workspaces or None,
    )
    engine = Engine.from_settings(settings, observers=[console])

    context = _event_context(settings.source_root)
    run_state = on_event(engine, definition, event, context)
    if run_state is None:
        if definition.triggers and not force:
            console.print_info(
                f"Workflow {definition.name!r} is not triggered by {event!r} "
                f"(triggers: {', '.join(sorted(definition.triggers))}). Nothing to do."
            )
            return
        run_state = engine.start(definition, TriggerEvent(kind=event, context=context))

    previous = _cancel_on_sigint(engine, run_state.id)
    try:
        console.print_run_started(
            workflow=f"{definition.name} ({workflow_path.name})",
            event=event,
            job_count=len(definition.jobs),
        )
        report = engine.execute(run_state)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except PipewrightError as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    console.print_report(report)
    if json_path is not None:
        json_path.write_text(report.to_json(), encoding="utf-8")
        console.print_info(f"Report written to {json_path}")

    if report.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    if not report.succeeded:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .json); discovered if omitted")
@click.pass_context
def validate(ctx, workflow):
    """Check a workflow definition without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow or ctx.obj["settings"].workflow)
    definition = _load(workflow_path)
    console.print_info(
        f"{workflow_path}: OK ({len(definition.jobs)} job(s), "
        f"triggers: {', '.join(sorted(definition.triggers)) or '-'})"
    )


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .json); discovered if omitted")
@click.pass_context
def plan(ctx, workflow):
    """Print the stages a workflow would run in."""
    console = get_console()
    workflow_path = discover_workflow(workflow or ctx.obj["settings"].workflow)
    definition = _load(workflow_path)
    console.print_plan(dag.topo_levels(definition))


@cli.command()
@click.option("--workflow", default=None, help="Workflow file served for trigger events")
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind to")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to bind to")
@click.pass_context
def serve(ctx, workflow, host, port):
    """Serve the trigger / report HTTP API."""
    import os

    import uvicorn

    workflow_path = discover_workflow(workflow or ctx.obj["settings"].workflow)
    _load(workflow_path)  # fail early on an invalid definition
    os.environ["PIPEWRIGHT_WORKFLOW"] = str(workflow_path.resolve())

    uvicorn.run(
        "pipewright.server:create_app",
        factory=True,
        host=host,
        port=port,
        log_level="debug" if ctx.obj.get("debug") else "info",
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
