# litreview/services/job_records.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.errors import NotFoundError
from litreview.models import Job, JobStatus
from litreview.services.activity import log_activity

_UNSET: Any = object()


async def create_job_record(
    db: AsyncSession,
    *,
    project_id: str,
    job_type: str,
    status: str = JobStatus.queued.value,
    resumable_state: Optional[dict] = None,
    logs: Optional[dict] = None,
    actor: str = "system",
    activity_payload: Optional[dict] = None,
) -> Job:
    job = Job(
        project_id=project_id,
        job_type=job_type,
        status=status,
        progress=0.0,
        resumable_state=resumable_state,
        logs=logs,
    )
    db.add(job)
    await db.commit()

    payload = {"job_id": job.id, "job_type": job_type, "status": job.status}
    if activity_payload:
        payload["metadata"] = activity_payload
    await log_activity(db, project_id=project_id, actor=actor, action="job.enqueued", payload=payload)
    return job


async def update_job_record(
    db: AsyncSession,
    job_id: str,
    *,
    status: Optional[str] = None,
    progress: Optional[float] = None,
    logs: Any = _UNSET,
    resumable_state: Any = _UNSET,
    worker_id: Any = _UNSET,
    completed_at: Any = _UNSET,
) -> None:
    """Partial update committed on its own; only the given fields change."""
    values: dict[str, Any] = {}
    if status:
        values["status"] = status
    if progress is not None:
        values["progress"] = float(progress)
    if logs is not _UNSET:
        values["logs"] = logs
    if resumable_state is not _UNSET:
        values["resumable_state"] = resumable_state
    if worker_id is not _UNSET:
        values["worker_id"] = worker_id
    if completed_at is not _UNSET:
        values["completed_at"] = completed_at
    if not values:
        return
    await db.execute(update(Job).where(Job.id == job_id).values(**values))
    await db.commit()


async def get_job_record(db: AsyncSession, project_id: str, job_id: str) -> Job:
    job = (
        await db.execute(select(Job).where(Job.id == job_id, Job.project_id == project_id))
    ).scalars().first()
    if not job:
        raise NotFoundError("Job not found")
    return job


async def load_job_snapshot(db: AsyncSession, job_id: str) -> Optional[tuple[str, Optional[dict], Optional[datetime]]]:
    """(status, resumable_state, completed_at) read as plain columns, bypassing the identity map."""
    row = (
        await db.execute(select(Job.status, Job.resumable_state, Job.completed_at).where(Job.id == job_id))
    ).first()
    if row is None:
        return None
    return row[0], row[1], row[2]
