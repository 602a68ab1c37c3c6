# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - run reports sent back to the control plane
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class RunCancelled(Exception):
    """Raised inside a job when its run was cancelled by a newer run of the group."""

    def __init__(self, run_id: str, group: str | None = None):
        self.run_id = run_id
        self.group = group
        super().__init__(f"run {run_id} cancelled (group={group})")


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "pixi": "Install pixi (https://pixi.sh) or fix PATH.",
    "mkdocs": "Install mkdocs (e.g., pip install mkdocs).",
    "python3": "Install Python 3 or fix PATH (python3).",
}
