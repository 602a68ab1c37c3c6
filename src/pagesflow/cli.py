# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from pagesflow.events import EVENT_NAMES, from_github_env, local_event
from pagesflow.runner import load_workflow, plan as plan_workflow, run_workflow
from pagesflow.settings import Settings
from pagesflow.ui.console import Console, get_console, set_console


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """All *_workflow.py files in `directory`."""
    return sorted(directory.glob("*_workflow.py"))


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Workflow file from the --workflow argument or the single *_workflow.py
    in the current directory. Exits with status 1 when that is ambiguous.
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  pagesflow run --workflow docs_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", "  *_workflow.py"],
            suggestion="Create a workflow file (e.g. docs_workflow.py) or pass --workflow.",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  pagesflow run --workflow docs_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def event_options(fn):
    """Options shared by `run` and `plan` to describe the triggering event."""
    options = [
        click.option("--event", "event_name", type=click.Choice(EVENT_NAMES), default=None,
                     help="Event to simulate (default: push, or GITHUB_EVENT_NAME with --from-env)"),
        click.option("--from-env", is_flag=True, default=False,
                     help="Read the event from GITHUB_* environment variables"),
        click.option("--ref", default=None, help="Ref of the event (default: current branch)"),
        click.option("--repository", default=None, help="owner/name (default: origin remote)"),
        click.option("--base-ref", default=None, help="Target branch of a pull request"),
        click.option("--changed", multiple=True, help="Changed file (repeatable; default: git diff)"),
        click.option("--compare-ref", default="origin/main", show_default=True,
                     help="Git ref to diff against when --changed is not given"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _build_event(event_name, from_env, ref, repository, base_ref, changed, compare_ref):
    if from_env:
        return from_github_env()
    return local_event(
        event_name or "push",
        ref=ref,
        repository=repository,
        base_ref=base_ref,
        changed_files=list(changed) if changed else None,
        compare_ref=compare_ref,
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
    """pagesflow: build a documentation site and publish it to a pages host."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to the single *_workflow.py)")
@event_options
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop starting new jobs after the first failure")
@click.pass_context
def run(ctx, workflow, event_name, from_env, ref, repository, base_ref, changed, compare_ref, workers, fail_fast):
    """Run a workflow for an event."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = _build_event(event_name, from_env, ref, repository, base_ref, changed, compare_ref)
        console.print_debug(f"{workflow_path}: {len(wf.jobs)} jobs, event {event.to_dict()}")
        report = run_workflow(
            wf,
            event,
            workspace=".",
            settings=Settings.from_env(),
            max_workers=workers,
            fail_fast=fail_fast,
        )
        if report.status != "not_triggered":
            console.print_results(report.status, report.jobs, report.outputs)
        if report.status in ("failure", "cancelled"):
            sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (FileNotFoundError, TypeError, ValueError, KeyError) as e:
        console.print_error("Could not run workflow", str(e))
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to the single *_workflow.py)")
@event_options
def plan(workflow, event_name, from_env, ref, repository, base_ref, changed, compare_ref):
    """Show whether a workflow triggers and which jobs would run."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = _build_event(event_name, from_env, ref, repository, base_ref, changed, compare_ref)
        result = plan_workflow(wf, event)
    except (FileNotFoundError, TypeError, ValueError, KeyError) as e:
        console.print_error("Could not plan workflow", str(e))
        sys.exit(1)

    console.print_header(f"{wf.name}: {event.name} {event.ref} ({event.repository})")
    console.print_trigger(result.trigger.triggered, result.trigger.reason)
    for name, outcome in result.jobs.items():
        console.print_plan_job(name, outcome, result.guards[name])


@cli.command()
@click.option("--api", required=True, help="Control plane URL (e.g., http://localhost:8000)")
@click.option("--repository", required=True, help="owner/name")
@click.option("--ref", default="refs/heads/main", show_default=True, help="Ref to run on")
@click.option("--sha", default=None, help="Commit to run on (default: tip of --ref)")
def dispatch(api, repository, ref, sha):
    """Trigger a workflow_dispatch run on the control plane."""
    from pagesflow.agent.api_client import APIClient, APIError

    console = get_console()
    client = APIClient(api, agent_id="cli")
    try:
        result = client.submit_event(
            {"name": "workflow_dispatch", "ref": ref, "repository": repository, "sha": sha}
        )
    except APIError as e:
        console.print_error("API request failed", str(e), suggestion=f"Check the API at {api}.")
        sys.exit(1)

    if not result.get("triggered"):
        console.print_trigger(False, result.get("reason", ""))
        sys.exit(1)
    console.print_info(f"Run ID: {result.get('run_id')}")
    for run_id in result.get("cancelled", []):
        console.print_info(f"  cancelled: {run_id}")


@cli.command()
@click.option("--api", required=True, help="Control plane URL (e.g., http://localhost:8000)")
@click.option("--agent-id", default=None, help="Unique agent identifier (defaults to hostname)")
@click.option("--poll-interval", default=5, type=int, help="Seconds between polls when idle")
@click.option("--once", is_flag=True, default=False, help="Claim at most one run, then exit")
@click.pass_context
def agent(ctx, api, agent_id, poll_interval, once):
    """Poll the control plane for runs and execute them."""
    import socket
    from pagesflow.agent.agent import run_agent

    console = get_console()
    try:
        run_agent(api, agent_id or socket.gethostname(), poll_interval, once=once)
    except KeyboardInterrupt:
        console.print_info("\nAgent stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    cli()
