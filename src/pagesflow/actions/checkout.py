# actions/checkout.py
from __future__ import annotations

import subprocess
from typing import Dict

from ..context import StepContext
from ..git_facts import git


def _wants_submodules(value) -> tuple[bool, bool]:
    """(update, recursive) for the `submodules` input."""
    if value in (True, "true"):
        return True, False
    if value == "recursive":
        return True, True
    return False, False


def run_step(ctx: StepContext) -> Dict[str, str]:
    """
    Put the triggering revision into the workspace.

    inputs:
      repository  clone URL, used when the target is not a repository yet
      ref         explicit ref/sha; defaults to the event sha
      path        target directory relative to the workspace
      submodules  false | true | recursive
    """
    inputs = ctx.step.inputs
    target = (ctx.workspace / inputs.get("path", ".")).resolve()
    wanted = inputs.get("ref") or ctx.run.event.sha
    update, recursive = _wants_submodules(inputs.get("submodules", False))

    try:
        if not git.is_repo(target):
            url = inputs.get("repository")
            if not url:
                raise ctx.error(
                    "checkout_failed",
                    f"{target} is not a git repository and no repository URL was given",
                )
            git.clone(url, target)

        if wanted and wanted != git.head_sha(cwd=target):
            git.fetch(cwd=target)
            git.checkout(wanted, cwd=target)

        if update and (target / ".gitmodules").exists():
            git.update_submodules(recursive=recursive, cwd=target)

        return {"ref": wanted or git.get_current_ref(cwd=target), "commit": git.head_sha(cwd=target)}
    except subprocess.CalledProcessError as e:
        raise ctx.error(
            "checkout_failed",
            f"git {' '.join(e.cmd[1:]) if isinstance(e.cmd, list) else e.cmd} exited {e.returncode}",
            stderr=(e.stderr or "").strip(),
        )
    except FileNotFoundError:
        raise ctx.error("tool_unavailable", "git is not available", hint="Install Git or fix PATH.")
