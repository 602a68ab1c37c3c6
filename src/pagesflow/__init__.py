from .dsl import concurrency, job, on_dispatch, on_pull_request, on_push, sh, uses, wf
from .guards import always, branch_is, event_is, ref_is, repository_is
from .model import Event, Job, Step, Workflow
from .runner import load_workflow, plan, run_dag, run_workflow

__all__ = [
    "concurrency", "job", "on_dispatch", "on_pull_request", "on_push", "sh", "uses", "wf",
    "always", "branch_is", "event_is", "ref_is", "repository_is",
    "Event", "Job", "Step", "Workflow", "load_workflow", "plan", "run_dag", "run_workflow",
]
