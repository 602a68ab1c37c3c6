# events.py
"""Build the triggering Event from a CI environment, a webhook body or a local checkout."""
from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .git_facts import git
from .model import Event
from .settings import Settings

EVENT_NAMES = ("push", "pull_request", "workflow_dispatch")
_ZERO_SHA = "0" * 40


def _diff_or_none(base: Optional[str], head: Optional[str], cwd: str | Path | None) -> Optional[tuple]:
    """Changed files between base and head, None when git cannot tell."""
    if not base or not head or base == _ZERO_SHA:
        return None
    try:
        return tuple(git.changed_files(base, head, cwd=cwd))
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def from_payload(
    name: str,
    payload: Mapping[str, Any],
    *,
    changed_files: Optional[List[str]] = None,
) -> Event:
    """
    Event from a webhook-style body.

    push payloads carry `ref`, `after` and optionally per-commit file lists;
    pull_request payloads carry `action`, `number` and `pull_request.base/head`.
    """
    if name not in EVENT_NAMES:
        raise ValueError(f"Unsupported event {name!r}; expected one of {EVENT_NAMES}")

    repository = (payload.get("repository") or {}).get("full_name") or payload.get("repository_name", "")

    if name == "push":
        if changed_files is None and "commits" in payload:
            files = set()
            for commit in payload.get("commits") or []:
                for key in ("added", "modified", "removed"):
                    files.update(commit.get(key) or [])
            changed_files = sorted(files)
        return Event(
            name=name,
            ref=payload["ref"],
            repository=repository,
            sha=payload.get("after"),
            changed_files=tuple(changed_files) if changed_files is not None else None,
        )

    if name == "pull_request":
        pr = payload.get("pull_request") or {}
        number = payload.get("number") or pr.get("number")
        return Event(
            name=name,
            ref=f"refs/pull/{number}/merge",
            repository=repository,
            sha=(pr.get("head") or {}).get("sha"),
            base_ref=(pr.get("base") or {}).get("ref"),
            action=payload.get("action"),
            changed_files=tuple(changed_files) if changed_files is not None else None,
        )

    return Event(
        name=name,
        ref=payload.get("ref", "refs/heads/main"),
        repository=repository,
        sha=payload.get("sha"),
        inputs={k: str(v) for k, v in (payload.get("inputs") or {}).items()},
    )


def from_github_env(environ: Optional[Mapping[str, str]] = None, *, cwd: str | Path | None = None) -> Event:
    """
    Event from the variables a GitHub-compatible runner exports.

    Changed files come from the event payload (push: before..after,
    pull_request: base sha..head sha) diffed in the local checkout.
    """
    env = os.environ if environ is None else environ
    name = env.get("GITHUB_EVENT_NAME")
    if not name:
        raise KeyError("GITHUB_EVENT_NAME is not set")

    payload: Dict[str, Any] = {}
    event_path = env.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).exists():
        payload = json.loads(Path(event_path).read_text(encoding="utf-8"))

    repository = env.get("GITHUB_REPOSITORY", "")
    ref = env.get("GITHUB_REF", "")
    sha = env.get("GITHUB_SHA")

    changed: Optional[tuple] = None
    if name == "push":
        changed = _diff_or_none(payload.get("before"), payload.get("after") or sha, cwd)
    elif name == "pull_request":
        pr = payload.get("pull_request") or {}
        changed = _diff_or_none((pr.get("base") or {}).get("sha"), (pr.get("head") or {}).get("sha"), cwd)

    return Event(
        name=name,
        ref=ref,
        repository=repository,
        sha=sha,
        base_ref=env.get("GITHUB_BASE_REF") or None,
        action=payload.get("action") if name == "pull_request" else None,
        changed_files=changed,
        inputs={k: str(v) for k, v in (payload.get("inputs") or {}).items()},
    )


def local_event(
    name: str = "push",
    *,
    ref: str | None = None,
    repository: str | None = None,
    base_ref: str | None = None,
    changed_files: Optional[List[str]] = None,
    compare_ref: str = "origin/main",
    cwd: str | Path | None = None,
    ignore: Optional[Iterable[str | Path]] = None,
) -> Event:
    """
    Event describing the local checkout.

    Missing values are read from git: the current ref, the origin slug, and
    the files changed against `compare_ref` (plus uncommitted changes when
    the tree is dirty). Files under `ignore`, by default the pagesflow home
    directory, do not count as changes.
    """
    if name not in EVENT_NAMES:
        raise ValueError(f"Unsupported event {name!r}; expected one of {EVENT_NAMES}")

    sha: Optional[str] = None
    try:
        sha = git.head_sha(cwd=cwd)
        if ref is None:
            ref = git.get_current_ref(cwd=cwd)
        if repository is None:
            repository = git.repository_slug(git.get_remote_url("origin", cwd=cwd))
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    if name == "pull_request":
        if not (ref or "").startswith("refs/pull/"):
            ref = "refs/pull/0/merge"
        base_ref = base_ref or compare_ref.split("/")[-1]

    if changed_files is None and name != "workflow_dispatch":
        if ignore is None:
            ignore = [Settings.from_env().home]
        changed_files = _local_changes(compare_ref, cwd, ignore)

    return Event(
        name=name,
        ref=ref or "refs/heads/main",
        repository=repository or Path(cwd or ".").resolve().name,
        sha=sha,
        base_ref=base_ref,
        action="synchronize" if name == "pull_request" else None,
        changed_files=tuple(changed_files) if changed_files is not None else None,
    )


def _ignored_prefixes(ignore: Iterable[str | Path], cwd: str | Path | None) -> List[str]:
    root = Path(cwd or ".").resolve()
    prefixes = []
    for path in ignore:
        path = Path(path)
        if path.is_absolute():
            try:
                path = path.resolve().relative_to(root)
            except ValueError:
                continue
        prefixes.append(path.as_posix().rstrip("/") + "/")
    return prefixes


def _local_changes(
    compare_ref: str,
    cwd: str | Path | None,
    ignore: Iterable[str | Path] = (),
) -> Optional[List[str]]:
    """
    Files committed since the merge-base with `compare_ref` plus uncommitted
    changes. Files under `ignore` (the runner's own state) are left out.
    """
    try:
        try:
            base = git.merge_base(compare_ref, cwd=cwd)
        except subprocess.CalledProcessError:
            # no remote configured, first commit, etc.
            base = "HEAD~1"
        files = set(git.changed_files(base, "HEAD", cwd=cwd))
        if git.is_dirty(cwd=cwd):
            files.update(git.working_tree_changes(cwd=cwd))
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None

    prefixes = _ignored_prefixes(ignore, cwd)
    return sorted(f for f in files if not any(f.startswith(p) for p in prefixes))
