from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from datetime import datetime

class Base(DeclarativeBase):
    pass

class Run(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()"))
    workflow: Mapped[str] = mapped_column(sa.Text, nullable=False)
    repository: Mapped[str] = mapped_column(sa.Text, nullable=False)
    repo_url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    # concurrency group; NULL when the workflow declares none
    group: Mapped[str | None] = mapped_column("concurrency_group", sa.Text, nullable=True, index=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # queued|running|success|failure|cancelled
    event_json: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=sa.text("'{}'::jsonb"))
    report_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    logs: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
    # how often the run was leased; bounded by MAX_ATTEMPTS
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("0"))

class Lease(Base):
    __tablename__ = "leases"
    run_id: Mapped[str] = mapped_column(UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), primary_key=True)
    agent_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    leased_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), nullable=False)
