# runner.py
from __future__ import annotations

import os
import runpy
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import guards, triggers
from .actions.registry import run_action, unknown_actions
from .artifacts import ArtifactStore
from .cache import CacheStore
from .groups import ConcurrencyGroups, RunHandle, get_groups
from .context import RunContext, StepContext, run_shell
from .dag import build_graph, topo_order
from .errors import CIError, RunCancelled, StepFailure
from .hosting import request_id_token
from .model import Event, Job, Workflow
from .settings import Settings
from .ui.console import get_console

# job statuses
OK = "ok"
FAILED = "failed"
CANCELLED = "cancelled"
SKIPPED_GUARD = "skipped(guard)"
SKIPPED_NEEDS = "skipped(needs)"
SKIPPED_FAIL_FAST = "skipped(fail-fast)"


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define one of:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"pagesflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            loaded = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with a helper). "
                    "Use the 'wf' helper: `from pagesflow import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        loaded = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        loaded = Workflow(name=wf_path.stem, jobs=loaded)

    if not isinstance(loaded, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow or a List[Job]. "
            "Define workflow() -> Workflow, WORKFLOW = wf(...) or JOBS = [Job, ...]."
        )
    return loaded


def validate_workflow(workflow: Workflow) -> List[str]:
    """Raise ValueError on a broken graph or unknown actions; return the job order."""
    order = topo_order(workflow.jobs)
    bad = unknown_actions(workflow)
    if bad:
        raise ValueError(f"Unknown actions: {bad}")
    return order


# ----------------------------------------------------------------------
# Planning (no execution)
# ----------------------------------------------------------------------

@dataclass
class Plan:
    trigger: triggers.TriggerDecision
    jobs: Dict[str, str] = field(default_factory=dict)     # name -> run | skipped(...)
    guards: Dict[str, str] = field(default_factory=dict)   # name -> rendered guard

    def runs(self, name: str) -> bool:
        return self.jobs.get(name) == "run"


def plan(workflow: Workflow, event: Event) -> Plan:
    """
    What would happen for `event`, assuming every step that runs succeeds.
    """
    decision = triggers.evaluate(workflow, event)
    result = Plan(trigger=decision)
    if not decision:
        return result

    for name in validate_workflow(workflow):
        job = workflow.job(name)
        result.guards[name] = guards.describe(job.condition)
        if any(result.jobs.get(n) != "run" for n in job.needs):
            result.jobs[name] = SKIPPED_NEEDS
        elif not guards.evaluate(job.condition, guards.GuardContext(event, dict(result.jobs))):
            result.jobs[name] = SKIPPED_GUARD
        else:
            result.jobs[name] = "run"
    return result


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_step(ctx: StepContext) -> Dict[str, str]:
    if ctx.step.kind == "uses":
        return run_action(ctx)
    run_shell(ctx, ctx.step.run)
    return {}


def _run_job(job: Job, run_ctx: RunContext) -> Tuple[str, Dict[str, str]]:
    """
    Returns (status, outputs) where status is ok | failed | cancelled.
    Outputs are flattened as "<step id>.<key>".
    """
    console = get_console()
    console.print_job_start(job.name)
    state: Dict[str, object] = {}
    outputs: Dict[str, str] = {}

    try:
        for step in job.steps:
            run_ctx.handle.raise_if_cancelled()
            console.print_step(job.name, step.name)
            out = _run_step(StepContext(run=run_ctx, job=job, step=step, state=state))
            if step.id:
                for key, value in out.items():
                    outputs[f"{step.id}.{key}"] = str(value)
    except RunCancelled:
        console.print_job_cancelled(job.name)
        return CANCELLED, outputs
    except StepFailure as e:
        console.print_failure(job.name, str(e), exit_code=e.exit_code, output=e.stderr or e.stdout)
        return FAILED, outputs
    except CIError as e:
        console.print_failure(job.name, str(e), hint=e.details.get("hint"))
        return FAILED, outputs
    except Exception as e:
        console.print_failure(job.name, f"{type(e).__name__}: {e}")
        console.print_exception(e)
        return FAILED, outputs

    console.print_job_success(job.name)
    return OK, outputs


def run_dag(
    jobs: List[Job],
    run_ctx: RunContext,
    *,
    max_workers: int | None = None,
    fail_fast: bool = False,
) -> Tuple[Dict[str, str], Dict[str, Dict[str, str]]]:
    """
    Schedule `jobs` by their needs and run them on a thread pool.

    A job starts once all of its needs finished. It is skipped when a need did
    not succeed (skipped(needs)) or when its guard is false (skipped(guard)).
    Returns (statuses, outputs) keyed by job name, in topological order.
    """
    console = get_console()
    by_name, adj, indeg = build_graph(jobs)
    order = topo_order(jobs)
    ready: List[str] = [name for name in order if indeg[name] == 0]
    results: Dict[str, str] = {}
    outputs: Dict[str, Dict[str, str]] = {}
    failed = False

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    def resolve(name: str, status: str) -> None:
        results[name] = status
        for nxt in sorted(adj[name]):
            indeg[nxt] -= 1
            if indeg[nxt] == 0:
                ready.append(nxt)

    in_flight: Dict = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            while ready:
                name = ready.pop(0)
                job = by_name[name]

                if run_ctx.handle.cancelled:
                    console.print_job_cancelled(name)
                    resolve(name, CANCELLED)
                    continue

                not_ok = [n for n in job.needs if results.get(n) != OK]
                if not_ok:
                    console.print_job_skipped(name, f"needs not successful: {not_ok}")
                    resolve(name, SKIPPED_NEEDS)
                    continue

                if fail_fast and failed:
                    console.print_job_skipped(name, "fail-fast")
                    resolve(name, SKIPPED_FAIL_FAST)
                    continue

                ctx = guards.GuardContext(event=run_ctx.event, results=dict(results))
                if not guards.evaluate(job.condition, ctx):
                    console.print_job_skipped(name, f"if: {guards.describe(job.condition)}")
                    resolve(name, SKIPPED_GUARD)
                    continue

                fut = pool.submit(_run_job, job, run_ctx)
                in_flight[fut] = name

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name = in_flight.pop(fut)
            status, job_outputs = fut.result()
            if job_outputs:
                outputs[name] = job_outputs
            if status == FAILED:
                failed = True
            resolve(name, status)

    ordered = {name: results[name] for name in order if name in results}
    return ordered, outputs


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

@dataclass
class RunReport:
    run_id: str
    workflow: str
    status: str                     # not_triggered | success | failure | cancelled
    trigger: triggers.TriggerDecision
    jobs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == "failure"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "status": self.status,
            "trigger": {"triggered": self.trigger.triggered, "reason": self.trigger.reason},
            "jobs": dict(self.jobs),
            "outputs": {k: dict(v) for k, v in self.outputs.items()},
        }


def _run_status(results: Dict[str, str]) -> str:
    if CANCELLED in results.values():
        return "cancelled"
    if FAILED in results.values():
        return "failure"
    return "success"


def run_workflow(
    workflow: Workflow,
    event: Event,
    *,
    workspace: str | Path = ".",
    settings: Optional[Settings] = None,
    groups: Optional[ConcurrencyGroups] = None,
    handle: Optional[RunHandle] = None,
    run_id: str | None = None,
    id_token_provider: Optional[Callable[[Optional[str]], Optional[str]]] = None,
    max_workers: int | None = None,
    fail_fast: bool = False,
) -> RunReport:
    """
    Evaluate triggers, take the concurrency group, run the jobs.

    Passing `handle` skips the local concurrency group; the caller (e.g. the
    agent) owns cancellation then.
    """
    console = get_console()
    settings = settings or Settings.from_env()
    run_id = run_id or uuid.uuid4().hex[:12]

    decision = triggers.evaluate(workflow, event)
    console.print_trigger(decision.triggered, decision.reason)
    if not decision:
        return RunReport(run_id=run_id, workflow=workflow.name, status="not_triggered", trigger=decision)

    order = validate_workflow(workflow)
    root = Path(workspace).resolve()

    conc = workflow.concurrency
    owns_group = handle is None and conc is not None
    if handle is None:
        if conc is not None:
            groups = groups or get_groups()
            if groups.active(conc.group) is not None:
                console.print_concurrency_wait(conc.group)
            handle = groups.acquire(conc.group, run_id, cancel_in_progress=conc.cancel_in_progress)
        else:
            handle = RunHandle(run_id)

    try:
        if handle.cancelled:
            for name in order:
                console.print_job_cancelled(name)
            jobs = {name: CANCELLED for name in order}
            return RunReport(run_id=run_id, workflow=workflow.name, status="cancelled", trigger=decision, jobs=jobs)

        console.print_run_started(
            workflow=workflow.name,
            run_id=run_id,
            event=event.name,
            ref=event.ref,
            repository=event.repository,
            job_count=len(workflow.jobs),
        )
        run_ctx = RunContext(
            run_id=run_id,
            workflow=workflow.name,
            event=event,
            workspace=root,
            settings=settings,
            artifacts=ArtifactStore(root / settings.artifact_dir, run_id),
            cache=CacheStore(root / settings.cache_dir),
            handle=handle,
            id_token_provider=id_token_provider or request_id_token,
        )
        results, outputs = run_dag(workflow.jobs, run_ctx, max_workers=max_workers, fail_fast=fail_fast)
    finally:
        if owns_group:
            groups.release(handle)

    return RunReport(
        run_id=run_id,
        workflow=workflow.name,
        status=_run_status(results),
        trigger=decision,
        jobs=results,
        outputs=outputs,
    )
