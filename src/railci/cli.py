# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from railci.aggregate import passed
from railci.config import Settings, parse_runners
from railci.git_facts import current_branch, get_remote_url, head_sha, is_dirty
from railci.graph import validate_workflow
from railci.loader import find_workflow_files, load_workflow
from railci.model import Event, EventType, Run, RunStatus, Workflow
from railci.orchestrator import Orchestrator
from railci.store import RunStore
from railci.trigger import Rejected
from railci.ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_PASSED = 2


def discover_workflow(workflow_arg: str | None) -> str:
    """
    Resolve the workflow to load from --workflow, RAILCI_WORKFLOW, or the
    workflow files in the current directory.

    Exits if nothing (or more than one candidate) is found.
    """
    console = get_console()
    target = workflow_arg or Settings.from_env().workflow
    if target:
        path = Path(target)
        if not path.exists() and path.suffix != ".py" and Path(target + ".py").exists():
            return target + ".py"
        return target

    workflow_files = find_workflow_files(".")
    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  railci_workflow.py",
                "  *_workflow.py",
            ],
            suggestion="Create a workflow file:\n  railci_workflow.py\n\nOr specify a workflow explicitly:\n  railci run --workflow my_workflow.py",
        )
        sys.exit(EXIT_FAILED)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  railci run --workflow railci_workflow.py",
        )
        sys.exit(EXIT_FAILED)

    return str(workflow_files[0])


def _load(ctx, workflow_arg: str | None) -> Workflow:
    console = get_console()
    target = discover_workflow(workflow_arg)
    try:
        return load_workflow(target)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {target}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_FAILED)


def _git_default(fn, fallback: str) -> str:
    try:
        return fn()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return fallback


def _exit_code(run: Run) -> int:
    if passed(run):
        return EXIT_OK
    if run.status is RunStatus.FAILED:
        return EXIT_FAILED
    return EXIT_NOT_PASSED


def _settings(workers=None, runners=None, db=None) -> Settings:
    return Settings.from_env().with_overrides(
        max_workers=workers,
        runners=parse_runners(runners) if runners else None,
        database_url=db,
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """railci: event-driven CI pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file or module (defaults to railci_workflow.py if present)")
@click.option(
    "--event",
    "event_type",
    type=click.Choice([t.value for t in EventType]),
    default=EventType.PUSH.value,
    show_default=True,
    help="Event to simulate",
)
@click.option("--ref", default=None, help="Pushed branch, or the PR head branch (defaults to the current branch)")
@click.option("--base", default="main", show_default=True, help="Branch a pull_request targets")
@click.option("--sha", default=None, help="Commit to test (defaults to HEAD)")
@click.option("--workers", default=None, type=int, help="Maximum number of jobs running at once")
@click.option("--runners", default=None, help="Runner slots as label=slots,... ('*' matches any label)")
@click.option("--db", default=None, help="Run history database URL")
@click.pass_context
def run(ctx, workflow, event_type, ref, base, sha, workers, runners, db):
    """Admit one event and run the workflow to completion."""
    console = get_console()
    wf = _load(ctx, workflow)

    ref = ref or _git_default(current_branch, "main")
    sha = sha or _git_default(head_sha, "")
    if event_type == EventType.PULL_REQUEST.value:
        event = Event(EventType.PULL_REQUEST, target_ref=base, commit_sha=sha, head_ref=ref, head_sha=sha)
    else:
        event = Event(EventType.PUSH, target_ref=ref, commit_sha=sha)

    try:
        if is_dirty():
            console.print_warning("working tree has uncommitted changes; jobs check out the committed tree")
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_debug("not inside a git repository")

    orchestrator = None
    try:
        settings = _settings(workers, runners, db)
        orchestrator = Orchestrator(wf, settings, store=RunStore(settings.database_url), console=console)
        result = orchestrator.submit(event)
        if isinstance(result, Rejected):
            sys.exit(EXIT_NOT_PASSED)
        try:
            result.wait()
        except KeyboardInterrupt:
            console.print_info("\nInterrupted by user, cancelling run")
            orchestrator.cancel(result.id)
            result.wait()
        sys.exit(_exit_code(result))
    except (ValueError, OSError) as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        if orchestrator is not None:
            orchestrator.shutdown()


@cli.command()
@click.option("--workflow", default=None, help="Workflow file or module")
@click.pass_context
def plan(ctx, workflow):
    """Show the jobs of a workflow and the order they can start in."""
    console = get_console()
    wf = _load(ctx, workflow)
    try:
        stages = validate_workflow(wf)
    except ValueError as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    console.print_header(f"Workflow: {wf.name}")
    console.print_info(f"Branches: {', '.join(wf.branches)}")
    console.print_info(f"Cancel in progress: {'yes' if wf.cancel_in_progress else 'no'}")
    for i, stage in enumerate(stages, start=1):
        console.print_info(f"\nStage {i}:")
        for name in stage:
            j = wf.job(name)
            needs = f" (needs: {', '.join(j.needs)})" if j.needs else ""
            console.print_info(
                f"  {j.display_name} [{j.runs_on}, {j.timeout_minutes:g}m, {len(j.steps)} steps]{needs}"
            )


@cli.command()
@click.option("--limit", default=20, show_default=True, type=int)
@click.option("--key", "concurrency_key", default=None, help="Only runs in this concurrency group")
@click.option("--db", default=None, help="Run history database URL")
def runs(limit, concurrency_key, db):
    """List recorded runs, newest first."""
    console = get_console()
    store = RunStore(_settings(db=db).database_url)
    try:
        records = store.list_runs(limit=limit, concurrency_key=concurrency_key)
    finally:
        store.close()

    if not records:
        console.print_info("No runs recorded.")
        return
    for rec in records:
        console.print_info(
            f"{rec.id}  {rec.status.upper():<10} {rec.event_type:<13} {rec.ref:<24} "
            f"{rec.created_at:%Y-%m-%d %H:%M:%S}"
        )


@cli.command()
@click.argument("run_id")
@click.option("--db", default=None, help="Run history database URL")
def show(run_id, db):
    """Show one recorded run and its jobs."""
    console = get_console()
    store = RunStore(_settings(db=db).database_url)
    try:
        rec = store.get(run_id)
        jobs = store.jobs(run_id) if rec is not None else []
    finally:
        store.close()

    if rec is None:
        console.print_error("Run not found", f"No run with id {run_id}")
        sys.exit(EXIT_FAILED)

    console.print_header(f"Run {rec.id}")
    console.print_info(f"Workflow: {rec.workflow}")
    console.print_info(f"Event: {rec.event_type} {rec.commit_sha[:12]}")
    console.print_info(f"Ref: {rec.ref}")
    console.print_info(f"Concurrency group: {rec.concurrency_key}")
    console.print_info(f"Status: {rec.status.upper()}")
    for jr in jobs:
        reason = f"  ({jr.reason})" if jr.reason else ""
        console.print_info(f"  {jr.name}: {jr.status.upper()}{reason}")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file or module")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--workers", default=None, type=int, help="Maximum number of jobs running at once")
@click.option("--runners", default=None, help="Runner slots as label=slots,...")
@click.option("--db", default=None, help="Run history database URL")
@click.pass_context
def serve(ctx, workflow, host, port, workers, runners, db):
    """Serve the webhook API (POST /events) for one workflow."""
    import uvicorn

    from railci.cloud import create_app

    console = get_console()
    wf = _load(ctx, workflow)
    settings = _settings(workers, runners, db)
    try:
        repo = settings.repo or get_remote_url("origin")
        console.print_debug(f"Checking out from {repo}")
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_debug("no origin remote; checkouts use the local repository")

    orchestrator = Orchestrator(wf, settings, store=RunStore(settings.database_url), console=console)
    uvicorn.run(create_app(orchestrator), host=host, port=port)


if __name__ == "__main__":
    cli()
