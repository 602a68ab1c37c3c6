# src/pagesflow/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .model import (
    Concurrency,
    DEFAULT_PR_TYPES,
    DispatchTrigger,
    Job,
    PullRequestTrigger,
    PushTrigger,
    Step,
    Workflow,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, id: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, id=id)


def uses(name: str, action: str, *, cwd: str | None = None, id: str | None = None, **with_: Any) -> Step:
    """
    Create a step that invokes a built-in action.

        uses("Checkout repository", "checkout", submodules="recursive")
    """
    return Step(
        name=name,
        kind="uses",
        cwd=cwd,
        id=id,
        data={"action": action, "with": dict(with_)},
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), uses(...))
    steps_list: Optional[List[Step]] = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    if_: Any = None,
    permissions: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    ids = [s.id for s in steps_final if s.id]
    if len(set(ids)) != len(ids):
        raise ValueError(f"job({name!r}) has duplicate step ids: {sorted(ids)}")

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        condition=if_,
        permissions=dict(permissions) if permissions is not None else None,
    )


# ---------------------------------------------------------------------
# Triggers / concurrency
# ---------------------------------------------------------------------

def _opt_list(values: Optional[Iterable[str]]) -> Optional[List[str]]:
    return list(values) if values is not None else None


def on_push(
    *,
    branches: Optional[Iterable[str]] = None,
    branches_ignore: Optional[Iterable[str]] = None,
    paths: Optional[Iterable[str]] = None,
    paths_ignore: Optional[Iterable[str]] = None,
) -> PushTrigger:
    return PushTrigger(
        branches=_opt_list(branches),
        branches_ignore=_opt_list(branches_ignore),
        paths=_opt_list(paths),
        paths_ignore=_opt_list(paths_ignore),
    )


def on_pull_request(
    *,
    branches: Optional[Iterable[str]] = None,
    branches_ignore: Optional[Iterable[str]] = None,
    paths: Optional[Iterable[str]] = None,
    paths_ignore: Optional[Iterable[str]] = None,
    types: Iterable[str] = DEFAULT_PR_TYPES,
) -> PullRequestTrigger:
    return PullRequestTrigger(
        branches=_opt_list(branches),
        branches_ignore=_opt_list(branches_ignore),
        paths=_opt_list(paths),
        paths_ignore=_opt_list(paths_ignore),
        types=tuple(types),
    )


def on_dispatch() -> DispatchTrigger:
    return DispatchTrigger()


def concurrency(group: str, *, cancel_in_progress: bool = False) -> Concurrency:
    return Concurrency(group=group, cancel_in_progress=cancel_in_progress)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    name: str = "workflow",
    on: Optional[Iterable[Any]] = None,
    concurrency: Optional[Concurrency] = None,
) -> Workflow:
    """
    Workflow definition helper.

        from pagesflow import wf, job, sh, on_push

        def workflow():
            return wf(
                job(...),
                job(...),
                on=[on_push(branches=["main"])],
            )
    """
    return Workflow(name=name, jobs=list(jobs), on=list(on or []), concurrency=concurrency)
