from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from .settings import DATABASE_URL, SQL_ECHO

# runs and leases live in Postgres; the queue itself is in Redis
engine = create_async_engine(DATABASE_URL, pool_pre_ping=True, echo=SQL_ECHO)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
