# context.py
from __future__ import annotations

import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from .artifacts import ArtifactStore
from .cache import CacheStore
from .groups import RunHandle
from .errors import CIError, StepFailure
from .model import Event, Job, Step
from .settings import Settings

OUTPUT_TAIL = 4000


@dataclass
class RunContext:
    """Everything shared by the jobs of one run."""
    run_id: str
    workflow: str
    event: Event
    workspace: Path
    settings: Settings
    artifacts: ArtifactStore
    cache: CacheStore
    handle: RunHandle
    id_token_provider: Callable[[Optional[str]], Optional[str]]

    def base_env(self) -> Dict[str, str]:
        """CI context variables exported to every step."""
        ev = self.event
        env = {
            "CI": "true",
            "GITHUB_ACTIONS": "false",
            "GITHUB_WORKFLOW": self.workflow,
            "GITHUB_RUN_ID": self.run_id,
            "GITHUB_EVENT_NAME": ev.name,
            "GITHUB_REF": ev.ref,
            "GITHUB_REPOSITORY": ev.repository,
            "GITHUB_WORKSPACE": str(self.workspace),
        }
        if ev.branch:
            env["GITHUB_REF_NAME"] = ev.branch
        if ev.sha:
            env["GITHUB_SHA"] = ev.sha
        if ev.base_ref:
            env["GITHUB_BASE_REF"] = ev.base_ref
        return env


@dataclass
class StepContext:
    run: RunContext
    job: Job
    step: Step
    # job-scoped scratch space shared by the steps of one job (e.g. pages context)
    state: Dict[str, object] = field(default_factory=dict)

    @property
    def workspace(self) -> Path:
        return self.run.workspace

    @property
    def cwd(self) -> Path:
        return (self.run.workspace / (self.step.cwd or ".")).resolve()

    def env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.run.base_env())
        env["GITHUB_JOB"] = self.job.name
        env.update(self.job.env or {})
        return env

    def id_token(self, audience: str | None = None) -> Optional[str]:
        if not self.job.has_permission("id-token", "write"):
            raise CIError(
                kind="permission_denied",
                job=self.job.name,
                step=self.step.name,
                message="identity token requested without 'id-token: write'",
                details={"permissions": self.job.permissions or {}},
            )
        return self.run.id_token_provider(audience)

    def error(self, kind: str, message: str, **details) -> CIError:
        return CIError(kind=kind, job=self.job.name, step=self.step.name, message=message, details=details)


def _kill(proc: subprocess.Popen) -> None:
    # the step runs in its own session; take down the whole process group
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


def run_shell(ctx: StepContext, cmd: str, *, cwd: Path | None = None) -> subprocess.CompletedProcess:
    """
    Run `cmd` through the shell with the step environment.

    Output is captured. The command is killed if the run gets cancelled; the
    cancellation then surfaces as RunCancelled. A non-zero exit raises
    StepFailure.
    """
    workdir = cwd or ctx.cwd
    if not workdir.exists():
        raise FileNotFoundError(f"[{ctx.job.name}] step '{ctx.step.name}' cwd not found: {workdir}")

    handle = ctx.run.handle
    handle.raise_if_cancelled()

    proc = subprocess.Popen(
        cmd,
        shell=True,
        cwd=str(workdir),
        env=ctx.env(),
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    poll = ctx.run.settings.step_poll_seconds
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=poll)
            break
        except subprocess.TimeoutExpired:
            if handle.cancelled:
                _kill(proc)
                proc.communicate()
                handle.raise_if_cancelled()

    if proc.returncode != 0:
        raise StepFailure(
            job=ctx.job.name,
            step=ctx.step.name,
            cmd=cmd,
            exit_code=proc.returncode,
            stdout=(stdout or "")[-OUTPUT_TAIL:],
            stderr=(stderr or "")[-OUTPUT_TAIL:],
        )
    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)
