# agent/agent.py
from __future__ import annotations

import signal
import time
from pathlib import Path

from pagesflow.settings import Settings
from pagesflow.ui.console import get_console

from .api_client import APIClient, APIError
from .executor import execute_lease
from .models import ExecutionResult, Lease

MAX_BACKOFF_SECONDS = 60


class Agent:
    """
    Leases runs from the control plane and executes them one at a time.

    Each run gets a fresh workflow load from the checked-out commit, so the
    agent itself never needs to know the workflow.
    """

    def __init__(self, client: APIClient, poll_interval: int = 5, settings: Settings | None = None):
        self.client = client
        self.poll_interval = poll_interval
        self.settings = settings or Settings.from_env()
        self.work_dir = Path(self.settings.home) / "agent_work"
        self.running = True
        self._failures = 0

    def stop(self, signum=None, frame=None) -> None:
        if signum is not None:
            get_console().print_info(f"\nReceived signal {signum}, finishing current run and stopping...")
        self.running = False

    def poll_once(self) -> ExecutionResult | None:
        """Claim and execute at most one run. None when nothing was queued."""
        lease = self.client.claim_lease()
        if lease is None:
            return None
        get_console().print_lease_acquired(workflow=lease.workflow, run_id=lease.run_id)
        return self._execute(lease)

    def _execute(self, lease: Lease) -> ExecutionResult:
        console = get_console()
        started = time.time()
        result = execute_lease(lease, self.client, self.work_dir, self.settings)

        try:
            self.client.complete_lease(lease.run_id, result.status, result.to_details())
        except APIError as e:
            # the lease expires; the next claim requeues the run or fails it
            console.print_error("Failed to send completion", str(e))

        console.print_execution_complete(status=result.status, duration=time.time() - started)
        if result.error:
            console.print_info(f"Error: {result.error}")
        if console.debug and result.logs:
            console.print_info(f"\nLogs for {lease.workflow} ({lease.run_id}):")
            console.print_info(result.logs)
        return result

    def _backoff(self) -> float:
        return min(self.poll_interval * (2 ** min(self._failures, 6)), MAX_BACKOFF_SECONDS)

    def run(self, once: bool = False) -> None:
        console = get_console()
        console.print_agent_started(
            agent_id=self.client.agent_id,
            api=self.client.base_url,
            poll_interval=self.poll_interval,
        )

        while self.running:
            try:
                result = self.poll_once()
                self._failures = 0
            except APIError as e:
                self._failures += 1
                delay = self._backoff()
                console.print_error("API error", str(e), suggestion=f"Retrying in {delay:.0f}s.")
                time.sleep(delay)
                continue

            if once:
                break
            if result is None:
                time.sleep(self.poll_interval)

        console.print_info("Agent stopped.")


def run_agent(api_url: str, agent_id: str, poll_interval: int = 5, once: bool = False) -> None:
    agent = Agent(APIClient(api_url, agent_id), poll_interval)
    signal.signal(signal.SIGINT, agent.stop)
    signal.signal(signal.SIGTERM, agent.stop)
    agent.run(once=once)
