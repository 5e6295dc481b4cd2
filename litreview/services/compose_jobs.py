# litreview/services/compose_jobs.py
"""
Compose job state machine.

The resumable state is a plain, JSON-serializable list of per-section states
plus the index of the section being worked on. It is stored on the Job row
and carried in the queue message, so any worker can rebuild it from storage
on every invocation.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.errors import from_pydantic
from litreview.jobs import QUEUE, WorkQueue
from litreview.models import Job, JobStatus
from litreview.schemas import (
    ComposeJobInput,
    ComposeJobQueuePayload,
    ComposeJobState,
    ComposeSectionInput,
    ComposeSectionState,
)
from litreview.services.job_records import create_job_record, update_job_record

logger = logging.getLogger(__name__)

COMPOSE_QUEUE_JOB_NAME = "compose:literature-review"
COMPOSE_JOB_TYPE = "compose.literature_review"


def parse_compose_input(data: Any) -> ComposeJobInput:
    if isinstance(data, ComposeJobInput):
        return data
    try:
        return ComposeJobInput.model_validate(data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Invalid compose job input") from e


def section_key(section_type: str, index: int) -> str:
    return f"{section_type}-{index + 1}"


def initial_section_state(section: ComposeSectionInput, index: int) -> ComposeSectionState:
    return ComposeSectionState(
        key=section.section_id or section_key(section.section_type, index),
        section_type=section.section_type,
        ledger_entry_ids=list(section.ledger_entry_ids),
        status="pending",
        attempts=0,
        draft_section_id=section.section_id,
    )


def build_initial_state(data: ComposeJobInput) -> ComposeJobState:
    """Pure: one pending state per requested section, same order."""
    return ComposeJobState(
        current_section_index=0,
        sections=[initial_section_state(s, i) for i, s in enumerate(data.sections)],
    )


def dump_state(state: ComposeJobState) -> dict:
    return state.model_dump(mode="json", exclude_none=True)


def load_state(raw: Any) -> Optional[ComposeJobState]:
    if not raw:
        return None
    try:
        return ComposeJobState.model_validate(raw)
    except PydanticValidationError:
        logger.warning("Ignoring unparseable resumable state")
        return None


def set_section_status(section: ComposeSectionState, status: str, error: Optional[str] = None) -> None:
    section.status = status
    section.last_updated_at = datetime.now(timezone.utc)
    section.last_error = error


def ensure_section_state(state: ComposeJobState, section: ComposeSectionInput, index: int) -> ComposeSectionState:
    """Return the state for `index`, creating or reconciling it against the payload section."""
    expected_key = section.section_id or section_key(section.section_type, index)
    while len(state.sections) <= index:
        state.sections.append(initial_section_state(section, len(state.sections)))

    current = state.sections[index]
    if current.key != expected_key:
        # a different section now sits at this position; never reuse its draft id
        logger.warning("Section key changed at index %s (%s -> %s); resetting state", index, current.key, expected_key)
        current = initial_section_state(section, index)
        state.sections[index] = current
    else:
        current.ledger_entry_ids = list(section.ledger_entry_ids)
        current.section_type = section.section_type
    return current


def merge_state_with_payload(persisted: ComposeJobState, payload: ComposeJobQueuePayload) -> ComposeJobState:
    hydrated = persisted.model_copy(deep=True)
    for index, section in enumerate(payload.sections):
        ensure_section_state(hydrated, section, index)
    del hydrated.sections[len(payload.sections):]
    return hydrated


def completed_count(state: ComposeJobState) -> int:
    return sum(1 for s in state.sections if s.status == "completed")


def completed_ratio(state: ComposeJobState, total_sections: int) -> float:
    if total_sections == 0:
        return 1.0
    return min(1.0, completed_count(state) / total_sections)


async def enqueue_compose_job(
    db: AsyncSession,
    data: Any,
    *,
    queue: Optional[WorkQueue] = None,
    attempts: Optional[int] = None,
    backoff_ms: Optional[int] = None,
) -> Job:
    """
    Validate, persist a queued Job carrying the initial state, then submit one
    queue message. If submission fails the job is marked failed and the error
    is re-raised.
    """
    payload = parse_compose_input(data)
    state = build_initial_state(payload)
    queue = queue or QUEUE

    job = await create_job_record(
        db,
        project_id=payload.project_id,
        job_type=COMPOSE_JOB_TYPE,
        status=JobStatus.queued.value,
        resumable_state=dump_state(state),
        logs={"mode": payload.mode, "request_id": payload.request_id},
        activity_payload={"mode": payload.mode, "section_count": len(payload.sections)},
    )
    job_id = job.id

    message = ComposeJobQueuePayload(**payload.model_dump(), job_id=job_id, state=state)
    try:
        await queue.add(
            COMPOSE_QUEUE_JOB_NAME,
            message.model_dump(mode="json", exclude_none=True),
            job_id=job_id,
            attempts=attempts,
            backoff_ms=backoff_ms,
        )
    except Exception as e:
        logger.exception("Failed to enqueue compose job %s", job_id)
        await db.rollback()
        await update_job_record(
            db,
            job_id,
            status=JobStatus.failed.value,
            logs={"message": "Failed to enqueue compose job", "error": str(e)},
        )
        raise

    logger.info("Enqueued compose job %s (%s sections)", job_id, len(payload.sections))
    return job
