from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import sqlalchemy as sa
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from pagesflow import triggers
from pagesflow.model import Event, Workflow
from pagesflow.runner import load_workflow

from .db import SessionLocal, engine
from .models import Base, Run, Lease
from .redisq import enqueue_run, dequeue_run, requeue_run, r, lease_lock_key
from .leases import FAIL, REQUEUE, expired_lease_action
from .settings import LEASE_SECONDS, MAX_ATTEMPTS, WORKFLOW_FILE

app = FastAPI(title="pagesflow Control Plane")

FINISHED = ("success", "failure", "cancelled", "not_triggered")

# -------------------- Schemas --------------------

class EventRequest(BaseModel):
    name: str
    ref: str
    repository: str
    repo_url: str | None = None  # defaults to https://github.com/<repository>.git
    sha: str | None = None
    base_ref: str | None = None
    action: str | None = None
    changed_files: list[str] | None = None
    inputs: dict[str, str] = Field(default_factory=dict)

class EventResponse(BaseModel):
    triggered: bool
    reason: str
    run_id: str | None = None
    cancelled: list[str] = Field(default_factory=list)

class ClaimRequest(BaseModel):
    agent_id: str

class ClaimedRun(BaseModel):
    run_id: str
    workflow: str
    payload_json: dict[str, Any]
    lease_expires_at: str

class CompleteRequest(BaseModel):
    agent_id: str
    status: str  # success|failure|cancelled|not_triggered
    details: dict[str, Any] = Field(default_factory=dict)

class RunResponse(BaseModel):
    id: str
    workflow: str
    repository: str
    group: str | None
    status: str
    event: dict[str, Any]
    report: dict[str, Any] | None
    logs: str | None
    created_at: datetime

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    # Creates tables if they don't exist. (uuid-ossp must be enabled in the database.)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

@lru_cache(maxsize=1)
def configured_workflow() -> Workflow:
    return load_workflow(WORKFLOW_FILE)

def _parse_id(run_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(run_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Run not found")

# -------------------- Endpoints --------------------

@app.post("/events", response_model=EventResponse)
async def submit_event(req: EventRequest):
    workflow = configured_workflow()
    event = Event(
        name=req.name,
        ref=req.ref,
        repository=req.repository,
        sha=req.sha,
        base_ref=req.base_ref,
        action=req.action,
        changed_files=tuple(req.changed_files) if req.changed_files is not None else None,
        inputs=req.inputs,
    )
    decision = triggers.evaluate(workflow, event)
    if not decision:
        return EventResponse(triggered=False, reason=decision.reason)

    conc = workflow.concurrency
    group = conc.group if conc else None
    cancelled: list[str] = []

    async with SessionLocal() as s:
        async with s.begin():
            if group is not None:
                # pending runs are always superseded by the newest one; the
                # running one only with cancel-in-progress
                superseded = ["queued", "running"] if conc.cancel_in_progress else ["queued"]
                q = sa.select(Run).where(Run.group == group, Run.status.in_(superseded))
                for old in (await s.execute(q)).scalars():
                    old.status = "cancelled"
                    cancelled.append(str(old.id))

            run = Run(
                workflow=workflow.name,
                repository=req.repository,
                repo_url=req.repo_url or f"https://github.com/{req.repository}.git",
                group=group,
                status="queued",
                event_json=event.to_dict(),
            )
            s.add(run)
            await s.flush()
            run_id = str(run.id)

    # push to Redis after DB commit
    await enqueue_run(run_id)

    return EventResponse(triggered=True, reason=decision.reason, run_id=run_id, cancelled=cancelled)

async def _group_busy(s, run: Run) -> bool:
    """True when another run of the group holds an unexpired lease."""
    if run.group is None:
        return False
    q = (
        sa.select(sa.func.count())
        .select_from(Run)
        .join(Lease, Lease.run_id == Run.id)
        .where(
            Run.group == run.group,
            Run.id != run.id,
            Lease.expires_at > now_utc(),
        )
    )
    return (await s.execute(q)).scalar_one() > 0

async def _reap_expired_leases() -> None:
    """Requeue running runs whose agent let the lease run out, or fail them after MAX_ATTEMPTS."""
    now = now_utc()
    requeue: list[str] = []
    async with SessionLocal() as s:
        async with s.begin():
            q = (
                sa.select(Run, Lease)
                .join(Lease, Lease.run_id == Run.id)
                .where(Lease.expires_at <= now)
                .with_for_update(of=Lease, skip_locked=True)
            )
            for run, lease in (await s.execute(q)).all():
                action = expired_lease_action(run.status, run.attempts, lease.expires_at, now, MAX_ATTEMPTS)
                if action is None:
                    continue
                if action == REQUEUE:
                    run.status = "queued"
                    requeue.append(str(run.id))
                elif action == FAIL:
                    run.status = "failure"
                    run.report_json = {
                        "error": f"lease expired after {run.attempts} attempts",
                        "error_type": "LeaseExpired",
                    }
                await s.delete(lease)

    for run_id in requeue:
        await r.delete(lease_lock_key(run_id))
        await enqueue_run(run_id)

@app.post("/runs/claim", response_model=ClaimedRun)
async def claim(req: ClaimRequest):
    await _reap_expired_leases()
    run_id = await dequeue_run(timeout_s=5)
    if not run_id:
        return Response(status_code=204)

    # Lock in Redis to reduce duplicate leasing during retries
    lock_key = lease_lock_key(run_id)
    got_lock = await r.set(lock_key, req.agent_id, nx=True, ex=LEASE_SECONDS)
    if not got_lock:
        return Response(status_code=204)

    expires_at = now_utc() + timedelta(seconds=LEASE_SECONDS)

    async with SessionLocal() as s:
        async with s.begin():
            run = await s.get(Run, uuid.UUID(run_id))
            if not run or run.status in FINISHED:
                # superseded while queued; drop it
                await r.delete(lock_key)
                return Response(status_code=204)

            if await _group_busy(s, run):
                await r.delete(lock_key)
                await requeue_run(run_id)
                return Response(status_code=204)

            lease = await s.get(Lease, run.id)
            if lease:
                lease.agent_id = req.agent_id
                lease.leased_at = now_utc()
                lease.expires_at = expires_at
            else:
                s.add(Lease(run_id=run.id, agent_id=req.agent_id, leased_at=now_utc(), expires_at=expires_at))

            run.status = "running"
            run.attempts += 1

            return ClaimedRun(
                run_id=run_id,
                workflow=run.workflow,
                payload_json={
                    "repo_url": run.repo_url,
                    "workflow_file": WORKFLOW_FILE,
                    "event": run.event_json,
                },
                lease_expires_at=expires_at.isoformat(),
            )

@app.post("/runs/{run_id}/complete")
async def complete(run_id: str, req: CompleteRequest):
    if req.status not in FINISHED:
        raise HTTPException(status_code=400, detail=f"status must be one of {'|'.join(FINISHED)}")

    async with SessionLocal() as s:
        async with s.begin():
            run = await s.get(Run, _parse_id(run_id))
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")

            lease = await s.get(Lease, run.id)
            if not lease:
                raise HTTPException(status_code=409, detail="No lease for run")
            if lease.agent_id != req.agent_id:
                raise HTTPException(status_code=403, detail="Lease owned by different agent")

            logs = req.details.get("logs", "")
            run.logs = logs if logs else None
            run.report_json = req.details.get("report")

            # a run cancelled by a newer one stays cancelled
            if run.status != "cancelled":
                run.status = req.status
            await s.delete(lease)

    await r.delete(lease_lock_key(run_id))
    return {"ok": True}

@app.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(run_id: str):
    """Get run details including report and logs."""
    async with SessionLocal() as s:
        run = await s.get(Run, _parse_id(run_id))
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")

        return RunResponse(
            id=str(run.id),
            workflow=run.workflow,
            repository=run.repository,
            group=run.group,
            status=run.status,
            event=run.event_json,
            report=run.report_json,
            logs=run.logs,
            created_at=run.created_at,
        )
