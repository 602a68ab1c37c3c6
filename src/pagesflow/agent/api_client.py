# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urljoin

from .models import Lease


class APIError(Exception):
    """Raised when API requests fail."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class APIClient:
    """HTTP client for the pagesflow control plane."""

    def __init__(self, base_url: str, agent_id: str):
        self.base_url = base_url.rstrip("/")
        self.agent_id = agent_id

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        """
        Make a JSON request and return the decoded body ({} when empty).

        Raises:
            APIError: on HTTP errors, network errors and invalid JSON
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url,
            data=req_data,
            headers={"Content-Type": "application/json"},
            method=method,
        )

        try:
            with urllib.request.urlopen(req) as response:
                if response.status == 204:
                    return {}
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}", status=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def submit_event(self, event: dict) -> dict:
        """POST an event; the control plane decides whether it triggers a run."""
        return self._request("POST", "/events", data=event)

    def claim_lease(self) -> Optional[Lease]:
        """Claim the next runnable run, None when the queue is empty."""
        response = self._request("POST", "/runs/claim", data={"agent_id": self.agent_id})
        if not response or "run_id" not in response:
            return None
        return Lease.from_dict(response)

    def run_status(self, run_id: str) -> str:
        return self._request("GET", f"/runs/{run_id}").get("status", "")

    def complete_lease(self, run_id: str, status: str, details: dict) -> None:
        self._request(
            "POST",
            f"/runs/{run_id}/complete",
            data={
                "agent_id": self.agent_id,
                "status": status,
                "details": details,
            },
        )
