from __future__ import annotations

from datetime import datetime

# what claim does with a run whose lease ran out
REQUEUE = "requeue"   # agent vanished; hand the run out again
FAIL = "fail"         # handed out too often already
RELEASE = "release"   # run already finished or was cancelled; just drop the lease


def expired_lease_action(status: str, attempts: int, expires_at: datetime, now: datetime, max_attempts: int) -> str | None:
    """
    Decide the fate of a leased run. None while the lease is still valid.

    A run is only requeued while it is `running`: a run cancelled by a newer
    one keeps its status, and the lease is released so the group frees up.
    """
    if expires_at > now:
        return None
    if status != "running":
        return RELEASE
    if attempts >= max_attempts:
        return FAIL
    return REQUEUE
