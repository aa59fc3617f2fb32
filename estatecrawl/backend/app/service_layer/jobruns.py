# app/service_layer/jobruns.py
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import JobRun, JobRunStatus, utcnow

log = logging.getLogger(__name__)


@dataclass
class JobHandle:
    """What a tracked script sees: the audit row id and a slot for its summary."""

    job_id: int
    job_name: str
    summary: dict[str, Any] = field(default_factory=dict)


def _dump(obj: Any) -> str:
    return json.dumps(obj, default=str)


@asynccontextmanager
async def tracked_job(
    session_factory: async_sessionmaker[AsyncSession],
    job_name: str,
    meta: dict[str, Any] | None = None,
) -> AsyncIterator[JobHandle]:
    """
    Wrap one script invocation in a job_runs audit row.

    The row is committed as running before the body starts, so a crash that
    kills the process still leaves a trace. Leaving the block normally stores
    handle.summary and marks it success; an exception marks it failed with
    "<ExcType>: <message>" and propagates unchanged.
    """
    async with session_factory() as session:
        jr = JobRun(job_name=job_name, started_at=utcnow(), status=JobRunStatus.running, meta_json=_dump(meta or {}))
        session.add(jr)
        await session.commit()
        job_id = jr.id
    log.info("job %s #%s started", job_name, job_id)

    handle = JobHandle(job_id=job_id, job_name=job_name)
    try:
        yield handle
    except Exception as e:
        await _finish(session_factory, job_id, status=JobRunStatus.failed, error=f"{type(e).__name__}: {e}")
        log.warning("job %s #%s failed: %s", job_name, job_id, e)
        raise
    await _finish(session_factory, job_id, status=JobRunStatus.success, summary_json=_dump(handle.summary))
    log.info("job %s #%s done", job_name, job_id)


async def _finish(session_factory: async_sessionmaker[AsyncSession], job_id: int, **values: Any) -> None:
    async with session_factory() as session:
        await session.execute(update(JobRun).where(JobRun.id == job_id).values(finished_at=utcnow(), **values))
        await session.commit()
