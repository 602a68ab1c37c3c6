"""Console output formatting utilities for pagesflow."""

from __future__ import annotations

import sys
import threading
from typing import Mapping, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # jobs run on worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        self._emit("", title, "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        run_id: str,
        event: str,
        ref: str,
        repository: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "",
            "RUN STARTED",
            f"Workflow: {workflow}",
            f"Run ID: {run_id}",
            f"Event: {event} ({ref})",
            f"Repository: {repository}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger(self, triggered: bool, reason: str) -> None:
        if triggered:
            self._emit(f"TRIGGER: {reason}")
        else:
            self._emit(f"NOT TRIGGERED: {reason}")

    def print_concurrency_wait(self, group: str) -> None:
        self._emit(f"CONCURRENCY: waiting for group '{group}'")

    def print_job_start(self, name: str) -> None:
        self._emit("", f"JOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        self._emit(f"[{job}] STEP: {name}")

    def print_job_success(self, name: str) -> None:
        self._emit(f"[{name}] STATUS: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        """Print a job failure; the full reason only in debug mode."""
        lines = [f"JOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        if output:
            lines.append("Output (tail):")
            lines.extend(f"  {line}" for line in output.rstrip().splitlines())
        self._emit(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._emit("", f"JOB SKIPPED: {name}", f"STATUS: skipped ({reason})")

    def print_job_cancelled(self, name: str) -> None:
        self._emit(f"[{name}] STATUS: cancelled")

    def print_cache(self, job: str, message: str) -> None:
        self._emit(f"[{job}] CACHE: {message}")

    def print_plan_job(self, name: str, outcome: str, guard: str) -> None:
        self._emit(f"  {name}: {outcome} (if: {guard})")

    def print_results(self, status: str, results: Mapping[str, str], outputs: Optional[Mapping] = None) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, f"RESULTS ({status.upper()})", "=" * 40]
        for job, job_status in results.items():
            display = job_status.upper() if job_status != "ok" else "SUCCESS"
            lines.append(f"  {job}: {display}")
        for job, values in (outputs or {}).items():
            for key, value in values.items():
                lines.append(f"  {job}.{key} = {value}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        lines = ["", f"ERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.extend(["", suggestion])
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_agent_started(self, agent_id: str, api: str, poll_interval: int) -> None:
        self._emit(
            "",
            "AGENT STARTED",
            f"Agent ID: {agent_id}",
            f"API: {api}",
            f"Polling every: {poll_interval}s",
            "",
        )

    def print_lease_acquired(self, workflow: str, run_id: str) -> None:
        self._emit("", "LEASE ACQUIRED", f"Workflow: {workflow}", f"Run ID: {run_id}")

    def print_execution_complete(self, status: str, duration: Optional[float] = None) -> None:
        lines = ["", "EXECUTION COMPLETE", f"Status: {status}"]
        if duration is not None:
            lines.append(f"Duration: {duration:.1f}s")
        self._emit(*lines)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Only printed in debug mode."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
