# triggers.py
"""
Trigger evaluation: does a workflow start for a given event?

Filters follow GitHub's glob rules:
  *    any run of characters except '/'
  **   any run of characters including '/'
  ?    a single character except '/'
  !p   a later negated pattern un-matches what earlier patterns matched
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional

from .model import DispatchTrigger, Event, PullRequestTrigger, PushTrigger, Workflow


@dataclass(frozen=True)
class TriggerDecision:
    triggered: bool
    reason: str

    def __bool__(self) -> bool:
        return self.triggered


@lru_cache(maxsize=512)
def _glob_regex(pattern: str) -> re.Pattern:
    out: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                # '**/' also matches zero directories
                if i + 2 < n and pattern[i + 2] == "/":
                    out.append("(?:.*/)?")
                    i += 3
                else:
                    out.append(".*")
                    i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(path: str, pattern: str) -> bool:
    return _glob_regex(pattern).match(path) is not None


def matches_filters(value: str, patterns: Iterable[str]) -> bool:
    """Last matching pattern wins; '!' patterns un-match."""
    matched = False
    for pat in patterns:
        if pat.startswith("!"):
            if matched and glob_match(value, pat[1:]):
                matched = False
        elif not matched and glob_match(value, pat):
            matched = True
    return matched


# ---------------------------------------------------------------------
# Filter checks
# ---------------------------------------------------------------------

def _check_branches(
    branch: Optional[str],
    branches: Optional[List[str]],
    branches_ignore: Optional[List[str]],
) -> Optional[str]:
    """Return a rejection reason or None when the branch filter passes."""
    if branches is None and branches_ignore is None:
        return None
    if branch is None:
        return "ref is not a branch"
    if branches is not None and not matches_filters(branch, branches):
        return f"branch {branch!r} not in {branches}"
    if branches_ignore is not None and matches_filters(branch, branches_ignore):
        return f"branch {branch!r} ignored by {branches_ignore}"
    return None


def _check_paths(
    changed: Optional[tuple],
    paths: Optional[List[str]],
    paths_ignore: Optional[List[str]],
) -> Optional[str]:
    if paths is None and paths_ignore is None:
        return None
    if changed is None:
        # diff unknown: GitHub runs the workflow in that case too
        return None
    if paths is not None:
        if not any(matches_filters(f, paths) for f in changed):
            return f"no changed file matches {paths}"
    if paths_ignore is not None:
        if all(matches_filters(f, paths_ignore) for f in changed):
            return f"all changed files ignored by {paths_ignore}"
    return None


def _evaluate_one(trigger, event: Event) -> TriggerDecision:
    if isinstance(trigger, DispatchTrigger):
        return TriggerDecision(True, "manual dispatch")

    if isinstance(trigger, PushTrigger):
        if event.ref.startswith("refs/tags/") and trigger.branches is not None:
            return TriggerDecision(False, "tag push does not match a branch filter")
        reason = _check_branches(event.branch, trigger.branches, trigger.branches_ignore)
        if reason is None:
            reason = _check_paths(event.changed_files, trigger.paths, trigger.paths_ignore)
        if reason is not None:
            return TriggerDecision(False, f"push: {reason}")
        return TriggerDecision(True, f"push to {event.ref}")

    if isinstance(trigger, PullRequestTrigger):
        if event.action is not None and event.action not in trigger.types:
            return TriggerDecision(False, f"pull_request: activity {event.action!r} not in {list(trigger.types)}")
        reason = _check_branches(event.base_ref, trigger.branches, trigger.branches_ignore)
        if reason is None:
            reason = _check_paths(event.changed_files, trigger.paths, trigger.paths_ignore)
        if reason is not None:
            return TriggerDecision(False, f"pull_request: {reason}")
        return TriggerDecision(True, f"pull request into {event.base_ref}")

    raise TypeError(f"Unknown trigger type: {type(trigger).__name__}")


def evaluate(workflow: Workflow, event: Event) -> TriggerDecision:
    """
    Decide whether `workflow` starts for `event`.

    A workflow without any trigger declared runs for every event.
    """
    if not workflow.on:
        return TriggerDecision(True, "no triggers declared")

    candidates = [t for t in workflow.on if t.event == event.name]
    if not candidates:
        declared = sorted({t.event for t in workflow.on})
        return TriggerDecision(False, f"event {event.name!r} not in {declared}")

    rejected: List[str] = []
    for trigger in candidates:
        decision = _evaluate_one(trigger, event)
        if decision.triggered:
            return decision
        rejected.append(decision.reason)
    return TriggerDecision(False, "; ".join(rejected))
