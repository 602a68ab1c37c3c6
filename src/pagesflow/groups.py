# groups.py
"""
Concurrency groups: at most one active run per group.

With cancel_in_progress a newly acquired run cancels the active run of the
group and takes over as soon as that run has released the group. Without it
the new run waits; only the newest waiter is kept, older waiters are
cancelled.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from .errors import RunCancelled


class RunHandle:
    """Cancellation token shared between a run and its concurrency group."""

    def __init__(self, run_id: str, group: str | None = None):
        self.run_id = run_id
        self.group = group
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelled(self.run_id, self.group)

    def __repr__(self) -> str:
        return f"RunHandle(run_id={self.run_id!r}, group={self.group!r}, cancelled={self.cancelled})"


class ConcurrencyGroups:
    def __init__(self):
        self._cond = threading.Condition()
        self._active: Dict[str, RunHandle] = {}
        self._pending: Dict[str, RunHandle] = {}

    def active(self, group: str) -> Optional[RunHandle]:
        with self._cond:
            return self._active.get(group)

    def acquire(
        self,
        group: str,
        run_id: str,
        *,
        cancel_in_progress: bool = False,
        timeout: float | None = None,
    ) -> RunHandle:
        """
        Block until `run_id` owns `group` or was itself superseded.

        Always returns a handle; check `handle.cancelled` before running.
        """
        handle = RunHandle(run_id, group)
        with self._cond:
            older = self._pending.pop(group, None)
            if older is not None:
                older.cancel()

            current = self._active.get(group)
            if current is None:
                self._active[group] = handle
                self._cond.notify_all()
                return handle

            if cancel_in_progress:
                current.cancel()

            self._pending[group] = handle
            self._cond.notify_all()

            ok = self._cond.wait_for(
                lambda: handle.cancelled or self._active.get(group) is None,
                timeout=timeout,
            )
            if self._pending.get(group) is handle:
                del self._pending[group]
            if not ok:
                handle.cancel()
            if handle.cancelled:
                return handle

            self._active[group] = handle
            return handle

    def release(self, handle: RunHandle) -> None:
        if handle.group is None:
            return
        with self._cond:
            if self._active.get(handle.group) is handle:
                del self._active[handle.group]
            self._cond.notify_all()


_groups: Optional[ConcurrencyGroups] = None


def get_groups() -> ConcurrencyGroups:
    """Process-wide registry used by the local runner."""
    global _groups
    if _groups is None:
        _groups = ConcurrencyGroups()
    return _groups
