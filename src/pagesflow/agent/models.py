# agent/models.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pagesflow.model import Event


@dataclass
class Lease:
    """A run leased from the control plane (ClaimedRun response)."""
    run_id: str
    workflow: str
    payload_json: Dict[str, Any]  # repo_url, workflow_file, event
    lease_expires_at: str         # ISO format timestamp

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Lease:
        return cls(
            run_id=data["run_id"],
            workflow=data["workflow"],
            payload_json=data["payload_json"],
            lease_expires_at=data["lease_expires_at"],
        )

    @property
    def repo_url(self) -> str:
        return self.payload_json.get("repo_url", "")

    @property
    def workflow_file(self) -> str:
        return self.payload_json.get("workflow_file", "docs_workflow.py")

    @property
    def event(self) -> Event:
        return Event.from_dict(self.payload_json["event"])


@dataclass
class ExecutionResult:
    status: str  # success | failure | cancelled | not_triggered
    logs: str
    report: Dict[str, Any]
    error: Optional[str] = None

    def to_details(self) -> Dict[str, Any]:
        return {
            "logs": self.logs,
            "report": self.report,
            "error": self.error,
        }
