from __future__ import annotations

import subprocess

import pytest

from pagesflow.agent.api_client import APIError
from pagesflow.agent.executor import LogCapture, RemoteRunHandle, execute_lease
from pagesflow.agent.models import Lease


class FakeAPI:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = 0

    def run_status(self, run_id):
        self.calls += 1
        status = self.statuses.pop(0) if self.statuses else "running"
        if isinstance(status, Exception):
            raise status
        return status


def test_remote_handle_follows_control_plane():
    api = FakeAPI(["running", "cancelled"])
    handle = RemoteRunHandle("r1", api, check_interval=0)
    assert not handle.cancelled
    assert handle.cancelled
    # once cancelled it stays cancelled without asking again
    assert handle.cancelled
    assert api.calls == 2


def test_remote_handle_throttles_and_survives_api_errors():
    api = FakeAPI([APIError("down")])
    handle = RemoteRunHandle("r1", api, check_interval=3600)
    assert not handle.cancelled
    assert not handle.cancelled
    assert api.calls == 1


def test_log_capture():
    with LogCapture() as capture:
        print("hello")
    assert capture.get_logs() == "hello\n"


def _lease(repo_url, event):
    return Lease.from_dict(
        {
            "run_id": "run-1",
            "workflow": "Deploy Docs",
            "payload_json": {"repo_url": repo_url, "workflow_file": "site_workflow.py", "event": event},
            "lease_expires_at": "2026-01-01T00:00:00+00:00",
        }
    )


def _git(*args, cwd):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def origin(tmp_path):
    repo = tmp_path / "origin" / "pixi"
    repo.mkdir(parents=True)
    try:
        _git("init", "-q", "-b", "main", cwd=repo)
    except (FileNotFoundError, subprocess.CalledProcessError):
        pytest.skip("git is not available")
    (repo / "site_workflow.py").write_text(
        "from pagesflow import job, sh, wf, on_push\n"
        "def workflow():\n"
        "    return wf(job('build', sh('Build', 'test -f site_workflow.py')), name='site',"
        " on=[on_push(branches=['main'])])\n",
        encoding="utf-8",
    )
    _git("add", ".", cwd=repo)
    _git("-c", "user.name=t", "-c", "user.email=t@example.com", "commit", "-q", "-m", "init", cwd=repo)
    sha = subprocess.run(
        ["git", "rev-parse", "HEAD"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.strip()
    return repo, sha


def test_execute_lease_runs_workflow_from_checkout(tmp_path, origin, settings):
    repo, sha = origin
    event = {"name": "push", "ref": "refs/heads/main", "repository": "prefix-dev/pixi", "sha": sha}
    result = execute_lease(_lease(str(repo), event), FakeAPI([]), tmp_path / "work", settings)

    assert result.status == "success", result.logs
    assert result.report["jobs"] == {"build": "ok"}
    assert "TRIGGER: push to refs/heads/main" in result.logs
    assert (tmp_path / "work" / "pixi" / "site_workflow.py").exists()


def test_execute_lease_reports_clone_failure(tmp_path, settings):
    event = {"name": "push", "ref": "refs/heads/main", "repository": "a/b"}
    result = execute_lease(_lease(str(tmp_path / "nowhere"), event), FakeAPI([]), tmp_path / "work", settings)
    assert result.status == "failure"
    assert result.error
    assert result.report["error_type"] == "RuntimeError"


class FakeClient:
    agent_id = "agent-1"
    base_url = "http://control-plane"

    def __init__(self, leases):
        self.leases = list(leases)
        self.completed = []

    def claim_lease(self):
        item = self.leases.pop(0) if self.leases else None
        if isinstance(item, Exception):
            raise item
        return item

    def complete_lease(self, run_id, status, details):
        self.completed.append((run_id, status, details))

    def run_status(self, run_id):
        return "running"


def test_poll_once_idle(settings):
    from pagesflow.agent.agent import Agent

    assert Agent(FakeClient([]), settings=settings).poll_once() is None


def test_poll_once_executes_and_reports(settings, monkeypatch):
    from pagesflow.agent import agent as agent_mod
    from pagesflow.agent.models import ExecutionResult

    lease = _lease("https://github.com/prefix-dev/pixi.git", {"name": "workflow_dispatch", "ref": "refs/heads/main", "repository": "prefix-dev/pixi"})
    seen = {}

    def fake_execute(lease_, client, work_dir, settings_):
        seen["work_dir"] = work_dir
        return ExecutionResult(status="success", logs="ok", report={"jobs": {"build": "ok"}})

    monkeypatch.setattr(agent_mod, "execute_lease", fake_execute)
    client = FakeClient([lease])
    result = agent_mod.Agent(client, settings=settings).poll_once()

    assert result.status == "success"
    assert client.completed == [
        ("run-1", "success", {"logs": "ok", "report": {"jobs": {"build": "ok"}}, "error": None})
    ]
    assert seen["work_dir"] == settings.home / "agent_work"


def test_run_once_backs_off_on_api_errors(settings, monkeypatch):
    from pagesflow.agent import agent as agent_mod

    sleeps = []
    monkeypatch.setattr(agent_mod.time, "sleep", sleeps.append)
    client = FakeClient([APIError("down"), APIError("down"), None])
    agent = agent_mod.Agent(client, poll_interval=5, settings=settings)
    agent.run(once=True)

    assert sleeps == [10, 20]
    assert agent._failures == 0
