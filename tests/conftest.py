from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from pagesflow.model import Event
from pagesflow.settings import Settings

ROOT = Path(__file__).resolve().parent.parent
CANONICAL = "prefix-dev/pixi"


@pytest.fixture
def settings(tmp_path):
    return Settings.from_env(
        {
            "PAGESFLOW_HOME": str(tmp_path / ".pagesflow"),
            "PAGESFLOW_PUBLISH_DIR": str(tmp_path / "published"),
            "PAGESFLOW_STEP_POLL_SECONDS": "0.05",
        }
    )


@pytest.fixture
def docs_workflow_path() -> Path:
    return ROOT / "docs_workflow.py"


def push(ref="refs/heads/main", changed=("docs/index.md",), repository=CANONICAL) -> Event:
    return Event(
        name="push",
        ref=ref,
        repository=repository,
        changed_files=tuple(changed) if changed is not None else None,
    )


def pull_request(base="main", changed=("docs/index.md",), action="opened", repository=CANONICAL) -> Event:
    return Event(
        name="pull_request",
        ref="refs/pull/7/merge",
        repository=repository,
        base_ref=base,
        action=action,
        changed_files=tuple(changed) if changed is not None else None,
    )


def dispatch(ref="refs/heads/main", repository=CANONICAL) -> Event:
    return Event(name="workflow_dispatch", ref=ref, repository=repository)


def run_git(*args, cwd) -> str:
    return subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    ).stdout.strip()


def commit_all(repo, message="change") -> str:
    run_git("add", "-A", cwd=repo)
    run_git("commit", "-q", "-m", message, cwd=repo)
    return run_git("rev-parse", "HEAD", cwd=repo)


@pytest.fixture
def git_env(monkeypatch):
    """Commit identity and local submodule URLs for throwaway repositories."""
    if shutil.which("git") is None:
        pytest.skip("git is not available")
    for key in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(key, "pagesflow")
    for key in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(key, "ci@example.com")
    monkeypatch.setenv("GIT_CONFIG_COUNT", "2")
    monkeypatch.setenv("GIT_CONFIG_KEY_0", "protocol.file.allow")
    monkeypatch.setenv("GIT_CONFIG_VALUE_0", "always")
    monkeypatch.setenv("GIT_CONFIG_KEY_1", "init.defaultBranch")
    monkeypatch.setenv("GIT_CONFIG_VALUE_1", "main")


def init_repo(path, files) -> str:
    """New repository at `path` with `files` committed; returns the commit."""
    path.mkdir(parents=True)
    run_git("init", "-q", cwd=path)
    for name, text in files.items():
        (path / name).parent.mkdir(parents=True, exist_ok=True)
        (path / name).write_text(text, encoding="utf-8")
    return commit_all(path, "init")
