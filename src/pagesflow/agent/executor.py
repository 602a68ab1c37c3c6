# agent/executor.py
from __future__ import annotations

import io
import subprocess
import sys
import time
from pathlib import Path

from pagesflow.groups import RunHandle
from pagesflow.git_facts import git
from pagesflow.runner import load_workflow, run_workflow
from pagesflow.settings import Settings

from .api_client import APIClient, APIError
from .models import ExecutionResult, Lease


class LogCapture:
    """
    Context manager that captures stdout/stderr for later submission to API.

    Logs are sent with the run completion, so everything printed while the
    run executes (including setup errors) ends up in the run details.
    """

    def __init__(self):
        self.log_buffer = io.StringIO()
        self.original_stdout = sys.stdout
        self.original_stderr = sys.stderr

    def __enter__(self):
        self.original_stdout = sys.stdout
        self.original_stderr = sys.stderr
        sys.stdout = self
        sys.stderr = self
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        sys.stdout = self.original_stdout
        sys.stderr = self.original_stderr

    def write(self, text: str) -> int:
        self.log_buffer.write(text)
        return len(text)

    def flush(self) -> None:
        pass

    def get_logs(self) -> str:
        return self.log_buffer.getvalue()


class RemoteRunHandle(RunHandle):
    """
    Run handle whose cancellation is decided by the control plane.

    A newer run in the same concurrency group marks this run cancelled on the
    server; the runner notices on its next check. The API is asked at most
    once every `check_interval` seconds.
    """

    def __init__(self, run_id: str, api_client: APIClient, check_interval: float = 2.0, group: str | None = None):
        super().__init__(run_id, group)
        self.api_client = api_client
        self.check_interval = check_interval
        self._last_check: float | None = None

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        now = time.monotonic()
        if self._last_check is None or now - self._last_check >= self.check_interval:
            self._last_check = now
            try:
                if self.api_client.run_status(self.run_id) == "cancelled":
                    self._cancelled.set()
            except APIError:
                # keep running; the lease expires if the control plane is gone
                pass
        return self._cancelled.is_set()


def _clone_or_update_repo(repo_url: str, lease: Lease, work_dir: Path) -> Path:
    """
    Clone or update the repository and check out the commit of the event.

    Raises:
        RuntimeError: If git operations fail
    """
    work_dir.mkdir(parents=True, exist_ok=True)

    repo_name = repo_url.rstrip("/").split("/")[-1].replace(".git", "")
    repo_path = work_dir / repo_name
    event = lease.event
    target = event.sha or event.ref
    if not event.sha and event.branch:
        # a reused checkout has a stale local branch; run on the fetched tip
        target = f"origin/{event.branch}"

    try:
        if repo_path.exists():
            git.fetch(cwd=repo_path)
        else:
            git.clone(repo_url, repo_path)
        if event.ref.startswith("refs/pull/"):
            git.fetch(event.ref, cwd=repo_path)
            target = event.sha or "FETCH_HEAD"
        git.checkout(target, cwd=repo_path)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"git {' '.join(e.cmd[1:])} failed: {(e.stderr or '').strip()}")
    except FileNotFoundError:
        raise RuntimeError("git command not found. Please install Git.")

    return repo_path


def execute_lease(
    lease: Lease,
    api_client: APIClient,
    work_dir: Path,
    settings: Settings | None = None,
) -> ExecutionResult:
    """
    Execute a leased run: check out the event's commit, load the workflow
    from the checkout and run it with a handle the control plane can cancel.
    """
    log_capture = LogCapture()
    report: dict = {}
    error = None

    try:
        with log_capture:
            repo_path = _clone_or_update_repo(lease.repo_url, lease, work_dir)
            workflow = load_workflow(repo_path / lease.workflow_file)
            group = workflow.concurrency.group if workflow.concurrency else None
            handle = RemoteRunHandle(lease.run_id, api_client, group=group)

            result = run_workflow(
                workflow,
                lease.event,
                workspace=repo_path,
                settings=settings or Settings.from_env(),
                handle=handle,
                run_id=lease.run_id,
            )
            report = result.to_dict()
            status = result.status
        logs = log_capture.get_logs()
    except Exception as e:
        status = "failure"
        error = str(e)
        logs = log_capture.get_logs()
        if error not in logs:
            logs = f"{logs}\nError: {error}" if logs else error
        report = {"error": error, "error_type": type(e).__name__}

    return ExecutionResult(status=status, logs=logs, report=report, error=error)
