# actions/registry.py
from __future__ import annotations

from typing import Callable, Dict, List

from ..context import StepContext
from ..model import Workflow
from . import checkout, pages, setup_env, site

ActionFn = Callable[[StepContext], Dict[str, str]]

ACTIONS: Dict[str, ActionFn] = {
    "checkout": checkout.run_step,
    "setup-env": setup_env.run_step,
    "configure-pages": pages.configure,
    "finalize-site": site.finalize,
    "normalize-permissions": site.normalize_permissions,
    "upload-pages-artifact": site.upload,
    "deploy-pages": pages.deploy,
}


def run_action(ctx: StepContext) -> Dict[str, str]:
    name = ctx.step.action
    fn = ACTIONS.get(name or "")
    if fn is None:
        raise ctx.error("unknown_action", f"unknown action {name!r}", known=sorted(ACTIONS))
    return fn(ctx) or {}


def unknown_actions(workflow: Workflow) -> List[str]:
    """'job/step: action' for every step that names an unregistered action."""
    bad: List[str] = []
    for j in workflow.jobs:
        for s in j.steps:
            if s.kind == "uses" and s.action not in ACTIONS:
                bad.append(f"{j.name}/{s.name}: {s.action}")
    return bad
