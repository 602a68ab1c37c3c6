# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Step:
    """A single step inside a job: a shell command or a built-in action."""
    name: str
    run: str = ""
    cwd: str | None = None
    kind: str = "run"                      # "run" | "uses"
    data: Optional[Dict[str, Any]] = None  # uses: {"action": ..., "with": {...}}
    id: str | None = None                  # exposes outputs as steps.<id>

    @property
    def action(self) -> str | None:
        if self.kind != "uses" or not self.data:
            return None
        return self.data.get("action")

    @property
    def inputs(self) -> Dict[str, Any]:
        if not self.data:
            return {}
        return dict(self.data.get("with") or {})


@dataclass
class Job:
    """
    A pipeline stage: guard + ordered steps + dependencies.

    `condition` is the job guard (see guards.py). A job without a condition
    runs whenever all of its `needs` succeeded.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    condition: Any = None
    permissions: Optional[Dict[str, str]] = None

    def has_permission(self, scope: str, level: str = "write") -> bool:
        if not self.permissions:
            return False
        granted = self.permissions.get(scope)
        if level == "read":
            return granted in ("read", "write")
        return granted == level


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PushTrigger:
    branches: Optional[List[str]] = None
    branches_ignore: Optional[List[str]] = None
    paths: Optional[List[str]] = None
    paths_ignore: Optional[List[str]] = None

    event = "push"


DEFAULT_PR_TYPES = ("opened", "synchronize", "reopened")


@dataclass(frozen=True)
class PullRequestTrigger:
    branches: Optional[List[str]] = None       # matched against the base branch
    branches_ignore: Optional[List[str]] = None
    paths: Optional[List[str]] = None
    paths_ignore: Optional[List[str]] = None
    types: tuple = DEFAULT_PR_TYPES

    event = "pull_request"


@dataclass(frozen=True)
class DispatchTrigger:
    event = "workflow_dispatch"


Trigger = Union[PushTrigger, PullRequestTrigger, DispatchTrigger]


@dataclass(frozen=True)
class Concurrency:
    group: str
    cancel_in_progress: bool = False


@dataclass
class Workflow:
    name: str
    jobs: list[Job]
    on: list = field(default_factory=list)
    concurrency: Optional[Concurrency] = None

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Triggering event
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """
    The event a run reacts to.

    changed_files=None means the diff is unknown; path filters then pass.
    """
    name: str                       # push | pull_request | workflow_dispatch
    ref: str                        # e.g. refs/heads/main, refs/pull/12/merge
    repository: str                 # owner/name
    sha: str | None = None
    base_ref: str | None = None     # pull_request: target branch name
    action: str | None = None       # pull_request activity type
    changed_files: Optional[tuple] = None
    inputs: Dict[str, str] = field(default_factory=dict)

    @property
    def branch(self) -> str | None:
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ref": self.ref,
            "repository": self.repository,
            "sha": self.sha,
            "base_ref": self.base_ref,
            "action": self.action,
            "changed_files": list(self.changed_files) if self.changed_files is not None else None,
            "inputs": dict(self.inputs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Event:
        changed = data.get("changed_files")
        return cls(
            name=data["name"],
            ref=data["ref"],
            repository=data["repository"],
            sha=data.get("sha"),
            base_ref=data.get("base_ref"),
            action=data.get("action"),
            changed_files=tuple(changed) if changed is not None else None,
            inputs=dict(data.get("inputs") or {}),
        )
