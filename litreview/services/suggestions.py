# litreview/services/suggestions.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.errors import GuardError, NotFoundError, ValidationError, from_pydantic
from litreview.jobs import QUEUE, WorkQueue
from litreview.models import (
    DraftSection,
    DraftSectionCitation,
    DraftStatus,
    DraftSuggestion,
    Job,
    JobStatus,
    LedgerEntry,
    SuggestionStatus,
)
from litreview.schemas import AppendParagraphDiff, CreateSuggestionInput
from litreview.services.activity import log_activity
from litreview.services.documents import (
    append_paragraphs,
    default_heading,
    dump_document,
    extract_heading,
    extract_primary_paragraph,
    parse_document,
)
from litreview.services.job_records import create_job_record, update_job_record
from litreview.services.suggestion_generator import SuggestionRequest, SuggestionResult, generate_suggestion
from litreview.services.versions import (
    ensure_draft_section_version,
    load_section_for_update,
    record_draft_section_version,
    snapshot_of,
)

logger = logging.getLogger(__name__)

SUGGESTION_QUEUE_JOB_NAME = "draft:suggestion"
SUGGESTION_JOB_TYPE = "draft.suggestion"

SuggestionGenerator = Callable[[SuggestionRequest], Awaitable[SuggestionResult]]


def parse_suggestion_input(data: Any) -> CreateSuggestionInput:
    if isinstance(data, CreateSuggestionInput):
        return data
    try:
        return CreateSuggestionInput.model_validate(data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Invalid suggestion request") from e


async def _verified_citation_keys(db: AsyncSession, section_id: str) -> list[str]:
    rows = await db.execute(
        select(LedgerEntry.citation_key)
        .join(DraftSectionCitation, DraftSectionCitation.ledger_entry_id == LedgerEntry.id)
        .where(DraftSectionCitation.draft_section_id == section_id, LedgerEntry.verified_by_human.is_(True))
        .order_by(LedgerEntry.citation_key.asc())
    )
    return list(dict.fromkeys(rows.scalars().all()))


async def create_draft_suggestion(
    db: AsyncSession,
    data: Any,
    *,
    generator: SuggestionGenerator = generate_suggestion,
) -> DraftSuggestion:
    """
    Propose an addition to a draft section. Only human-verified citation keys
    are offered to the generator. The section itself is not touched.
    """
    req = parse_suggestion_input(data)

    section = (
        await db.execute(
            select(DraftSection).where(DraftSection.id == req.draft_section_id, DraftSection.project_id == req.project_id)
        )
    ).scalars().first()
    if not section:
        raise NotFoundError("Draft section not found for project")

    doc = parse_document(section.content)
    verified = await _verified_citation_keys(db, section.id)
    excerpt = extract_primary_paragraph(doc)
    heading = extract_heading(doc) or default_heading(section.section_type)

    result = await generator(SuggestionRequest(
        project_id=section.project_id,
        section_id=section.id,
        suggestion_type=req.suggestion_type,
        current_text=excerpt,
        heading=heading,
        verified_citations=verified,
        narrative_voice=req.narrative_voice,
    ))
    paragraphs = [p.strip() for p in result.paragraphs if p and p.strip()]
    if not paragraphs:
        raise ValidationError("Suggestion generator returned no paragraphs")

    diff = AppendParagraphDiff(before=excerpt, after=paragraphs[0])
    suggestion = DraftSuggestion(
        project_id=section.project_id,
        draft_section_id=section.id,
        suggestion_type=req.suggestion_type,
        summary=result.summary,
        diff=diff.model_dump(mode="json"),
        content=dump_document(append_paragraphs(doc, paragraphs)),
        status=SuggestionStatus.pending.value,
    )
    db.add(suggestion)
    await db.commit()

    await log_activity(
        db,
        project_id=section.project_id,
        action="draft.suggestion_created",
        payload={
            "draft_section_id": section.id,
            "suggestion_id": suggestion.id,
            "suggestion_type": suggestion.suggestion_type,
            "verified_citations": verified,
        },
    )
    return suggestion


async def list_draft_suggestions(db: AsyncSession, project_id: str, draft_section_id: Optional[str] = None) -> list[DraftSuggestion]:
    stmt = select(DraftSuggestion).where(DraftSuggestion.project_id == project_id)
    if draft_section_id:
        stmt = stmt.where(DraftSuggestion.draft_section_id == draft_section_id)
    stmt = stmt.order_by(DraftSuggestion.created_at.desc(), DraftSuggestion.id.desc())
    return list((await db.execute(stmt)).scalars().all())


async def _mark_resolved(db: AsyncSession, suggestion_id: str, status: str, actor: str) -> bool:
    """Conditional pending -> terminal transition; False if someone else resolved it first."""
    result = await db.execute(
        update(DraftSuggestion)
        .where(DraftSuggestion.id == suggestion_id, DraftSuggestion.status == SuggestionStatus.pending.value)
        .values(status=status, resolved_at=datetime.now(timezone.utc), resolved_by=actor)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _reload(db: AsyncSession, suggestion_id: str) -> DraftSuggestion:
    return await db.get(DraftSuggestion, suggestion_id, populate_existing=True)


async def resolve_draft_suggestion(db: AsyncSession, suggestion_id: str, action: str, actor: str = "system") -> DraftSuggestion:
    """
    Accept or dismiss a pending suggestion. Resolving an already-resolved
    suggestion is a no-op that returns the stored record, so duplicate
    submissions are harmless.
    """
    if action not in ("accept", "dismiss"):
        raise ValidationError(f"Unsupported suggestion action: {action}")

    suggestion = await db.get(DraftSuggestion, suggestion_id)
    if not suggestion:
        raise GuardError("Suggestion not found")
    if suggestion.status != SuggestionStatus.pending.value:
        return suggestion

    project_id, section_id = suggestion.project_id, suggestion.draft_section_id

    if action == "accept":
        if not suggestion.content:
            raise ValidationError("Suggestion missing content payload")
        content = dump_document(parse_document(suggestion.content))
        try:
            section = await load_section_for_update(db, project_id, section_id)
            await ensure_draft_section_version(db, snapshot_of(section))
            if not await _mark_resolved(db, suggestion_id, SuggestionStatus.accepted.value, actor):
                await db.rollback()
                return await _reload(db, suggestion_id)
            section.content = content
            section.version = section.version + 1
            section.status = DraftStatus.draft.value
            section.approved_at = None
            await db.flush()
            await record_draft_section_version(db, snapshot_of(section))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        new_version = section.version
    else:
        if not await _mark_resolved(db, suggestion_id, SuggestionStatus.dismissed.value, actor):
            await db.rollback()
            return await _reload(db, suggestion_id)
        await db.commit()
        new_version = None

    payload = {"suggestion_id": suggestion_id, "draft_section_id": section_id, "action": action}
    if new_version is not None:
        payload["version"] = new_version
    await log_activity(
        db,
        project_id=project_id,
        actor=actor,
        action="draft.suggestion_accepted" if action == "accept" else "draft.suggestion_dismissed",
        payload=payload,
    )
    logger.info("Suggestion %s %sed by %s", suggestion_id, action, actor)
    return await _reload(db, suggestion_id)


# ---------- queued generation ----------

async def enqueue_draft_suggestion(db: AsyncSession, data: Any, *, queue: Optional[WorkQueue] = None) -> Job:
    req = parse_suggestion_input(data)
    job = await create_job_record(
        db,
        project_id=req.project_id,
        job_type=SUGGESTION_JOB_TYPE,
        activity_payload={"draft_section_id": req.draft_section_id, "suggestion_type": req.suggestion_type},
    )
    job_id = job.id
    try:
        await (queue or QUEUE).add(
            SUGGESTION_QUEUE_JOB_NAME,
            {"job_id": job_id, **req.model_dump(mode="json", exclude_none=True)},
            job_id=job_id,
        )
    except Exception as e:
        logger.exception("Failed to enqueue suggestion job %s", job_id)
        await update_job_record(
            db, job_id,
            status=JobStatus.failed.value,
            logs={"message": "Failed to enqueue suggestion job", "error": str(e)},
        )
        raise
    return job


async def process_suggestion_job(
    db: AsyncSession,
    data: dict,
    *,
    generator: SuggestionGenerator = generate_suggestion,
) -> dict:
    job_id = data.get("job_id")
    if not job_id:
        raise ValidationError("Suggestion job payload is missing job_id")

    # redelivered message for a finished job: hand back the stored result
    done = (
        await db.execute(select(Job.status, Job.logs).where(Job.id == job_id))
    ).first()
    if done is not None and done.status == JobStatus.completed.value and (done.logs or {}).get("suggestion_id"):
        logger.info("Suggestion job %s already completed; nothing to do", job_id)
        return {"suggestion_id": done.logs["suggestion_id"]}

    try:
        await update_job_record(db, job_id, status=JobStatus.in_progress.value)
        suggestion = await create_draft_suggestion(
            db, {k: v for k, v in data.items() if k != "job_id"}, generator=generator
        )
    except Exception as e:
        await db.rollback()
        await update_job_record(db, job_id, status=JobStatus.failed.value, logs={"error": str(e)})
        raise
    await update_job_record(
        db, job_id,
        status=JobStatus.completed.value,
        progress=1.0,
        logs={"suggestion_id": suggestion.id},
        completed_at=datetime.now(timezone.utc),
    )
    return {"suggestion_id": suggestion.id}
