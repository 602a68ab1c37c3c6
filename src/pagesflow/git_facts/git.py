# git.py
# Small, focused wrapper around the Git CLI.
# Every Git interaction of the runner, the checkout action and the agent goes
# through this module so nothing else shells out to git directly.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: str | Path | None = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: git arguments (e.g. ["status", "--porcelain"])
        cwd: working directory; defaults to the process cwd.

    Returns:
        Stdout with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError if git exits non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def is_repo(path: str | Path) -> bool:
    """True if `path` is inside a git work tree."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def head_sha(cwd: str | Path | None = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: str | Path | None = None) -> bool:
    """
    Check whether the working tree has uncommitted changes
    (modified, staged or untracked files).
    """
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def changed_files(base: str, head: str = "HEAD", cwd: str | Path | None = None) -> List[str]:
    """
    Files changed between two refs, relative to the repository root.

    Typical usage:
        base = merge_base("origin/main")
        files = changed_files(base)
    """
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def working_tree_changes(cwd: str | Path | None = None) -> List[str]:
    """Unstaged, staged and untracked files of a dirty work tree."""
    files = set()
    for args in (
        ["diff", "--name-only"],
        ["diff", "--name-only", "--cached"],
        ["ls-files", "--others", "--exclude-standard"],
    ):
        out = _git(args, cwd=cwd)
        if out:
            files.update(out.splitlines())
    return sorted(files)


def merge_base(with_ref: str = "origin/main", cwd: str | Path | None = None) -> str:
    """
    Merge-base (common ancestor) between HEAD and another ref: the point
    where the current branch diverged, i.e. the base of a pull request diff.
    """
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: str | Path | None = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def get_current_ref(cwd: str | Path | None = None) -> str:
    """
    Current ref in fully qualified form: refs/heads/<branch>, or the HEAD sha
    when detached.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch == "HEAD":
        return head_sha(cwd=cwd)
    return f"refs/heads/{branch}"


_SLUG_RE = re.compile(r"(?:[:/])([^/:]+)/([^/]+?)(?:\.git)?/?$")


def repository_slug(remote_url: str) -> Optional[str]:
    """
    owner/name from a remote URL.

        https://github.com/prefix-dev/pixi.git -> prefix-dev/pixi
        git@github.com:prefix-dev/pixi.git     -> prefix-dev/pixi
    """
    m = _SLUG_RE.search(remote_url.strip())
    if not m:
        return None
    return f"{m.group(1)}/{m.group(2)}"


# ---------------------------------------------------------------------
# Checkout primitives
# ---------------------------------------------------------------------

def clone(url: str, dest: str | Path) -> Path:
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    _git(["clone", url, str(dest)])
    return dest


def fetch(ref: str | None = None, remote: str = "origin", cwd: str | Path | None = None) -> None:
    args = ["fetch", remote]
    if ref:
        args.append(ref)
    _git(args, cwd=cwd)


def checkout(ref: str, cwd: str | Path | None = None) -> None:
    # refs/heads/main -> main, so git creates a tracking branch if needed
    if ref.startswith("refs/heads/"):
        ref = ref[len("refs/heads/"):]
    _git(["checkout", "--quiet", ref], cwd=cwd)


def update_submodules(recursive: bool = True, cwd: str | Path | None = None) -> None:
    args = ["submodule", "update", "--init"]
    if recursive:
        args.append("--recursive")
    _git(args, cwd=cwd)
