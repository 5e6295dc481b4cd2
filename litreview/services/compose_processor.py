# litreview/services/compose_processor.py
"""
Consumes one compose queue message: sections are processed strictly in order,
each one gated by ledger lookup + citation validation before the generator is
called, and committed together with its version rows in one transaction.

A fatal error fails the whole job but leaves sections committed earlier in
the run in place. Re-delivering the same message resumes from the persisted
state (completed sections are skipped).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.errors import (
    MISSING_LEDGER_ENTRIES,
    CitationValidationError,
    ComposeError,
    FatalJobError,
    NotFoundError,
    from_pydantic,
)
from litreview.models import DraftSection, DraftSectionCitation, DraftStatus, JobStatus, LedgerEntry
from litreview.schemas import ComposeJobQueuePayload, ComposeJobResult, ComposeSectionInput, DocumentNode
from litreview.services.activity import log_activity
from litreview.services.citations import (
    assert_citations_valid,
    ledger_citation_records,
    section_citation_references,
)
from litreview.services.compose_generator import (
    ComposeGenerationRequest,
    entries_for_generation,
    generate_compose_document,
)
from litreview.services.compose_jobs import (
    completed_count,
    completed_ratio,
    dump_state,
    ensure_section_state,
    load_state,
    merge_state_with_payload,
    set_section_status,
)
from litreview.services.documents import dump_document
from litreview.services.job_records import load_job_snapshot, update_job_record
from litreview.services.readiness import as_locator_list
from litreview.services.versions import ensure_draft_section_version, record_draft_section_version, snapshot_of

logger = logging.getLogger(__name__)

DocumentGenerator = Callable[[ComposeGenerationRequest], Awaitable[DocumentNode]]


def parse_queue_payload(data: Any) -> ComposeJobQueuePayload:
    if isinstance(data, ComposeJobQueuePayload):
        return data
    try:
        return ComposeJobQueuePayload.model_validate(data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Invalid compose job payload") from e


async def fetch_ledger_entries(db: AsyncSession, project_id: str, ledger_ids: Sequence[str]) -> list[LedgerEntry]:
    """Entries in requested order; any id missing from the project is fatal for the job."""
    rows = (
        await db.execute(
            select(LedgerEntry).where(LedgerEntry.project_id == project_id, LedgerEntry.id.in_(list(ledger_ids)))
        )
    ).scalars().all()
    by_id = {r.id: r for r in rows}
    missing = [i for i in ledger_ids if i not in by_id]
    if missing:
        raise FatalJobError(
            f"Missing ledger entries: {', '.join(missing)}",
            code=MISSING_LEDGER_ENTRIES,
            details={"ledger_entry_ids": missing},
        )
    return [by_id[i] for i in ledger_ids]


def check_section_citations(section_key: str, ledger_ids: Sequence[str], entries: Sequence[LedgerEntry]) -> None:
    try:
        assert_citations_valid(section_citation_references(section_key, ledger_ids), ledger_citation_records(entries))
    except CitationValidationError as e:
        raise FatalJobError(e.message, code=e.code, details=e.errors) from e


def _primary_locator(entry: LedgerEntry) -> Optional[dict]:
    items = as_locator_list(entry.locators)
    return dict(items[0]) if items else None


async def commit_draft_section(
    db: AsyncSession,
    *,
    project_id: str,
    section_input: ComposeSectionInput,
    existing_section_id: Optional[str],
    document: DocumentNode,
    entries: Sequence[LedgerEntry],
) -> DraftSection:
    """snapshot prior state -> create/update -> replace citation links -> record new version, one commit."""
    content = dump_document(document)
    try:
        existing = None
        if existing_section_id:
            existing = (
                await db.execute(select(DraftSection).where(DraftSection.id == existing_section_id).with_for_update())
            ).scalars().first()
        if existing is not None and existing.project_id != project_id:
            raise NotFoundError(f"Draft section {existing.id} does not belong to project {project_id}")

        if existing is not None:
            await ensure_draft_section_version(db, snapshot_of(existing))
            existing.content = content
            existing.version = existing.version + 1
            existing.status = DraftStatus.draft.value
            existing.approved_at = None
            record = existing
        else:
            record = DraftSection(
                project_id=project_id,
                section_type=section_input.section_type,
                content=content,
                status=DraftStatus.draft.value,
                version=1,
            )
            db.add(record)
        await db.flush()

        links = DraftSectionCitation.__table__
        await db.execute(delete(links).where(links.c.draft_section_id == record.id))
        if entries:
            await db.execute(insert(links), [
                {"draft_section_id": record.id, "ledger_entry_id": e.id, "locator": _primary_locator(e)}
                for e in entries
            ])

        await record_draft_section_version(db, snapshot_of(record))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return record


async def process_compose_job(
    db: AsyncSession,
    data: Any,
    *,
    generator: DocumentGenerator = generate_compose_document,
) -> ComposeJobResult:
    payload = parse_queue_payload(data)
    job_id, project_id = payload.job_id, payload.project_id
    total = len(payload.sections)

    snapshot = await load_job_snapshot(db, job_id)
    if snapshot is None:
        raise NotFoundError(f"Job {job_id} not found")
    status, persisted_raw, _ = snapshot

    state = payload.state.model_copy(deep=True)
    persisted = load_state(persisted_raw)
    if persisted is not None:
        state = merge_state_with_payload(persisted, payload)

    if status == JobStatus.completed.value and completed_count(state) == total:
        logger.info("Compose job %s already completed; nothing to do", job_id)
        return ComposeJobResult(completed_sections=total, total_sections=total)

    current_key: Optional[str] = None
    try:
        await update_job_record(
            db, job_id,
            status=JobStatus.in_progress.value,
            progress=completed_ratio(state, total),
            resumable_state=dump_state(state),
        )

        for index, section_input in enumerate(payload.sections):
            section_state = ensure_section_state(state, section_input, index)
            if section_state.status == "completed" and section_state.draft_section_id:
                continue

            current_key = section_state.key
            state.current_section_index = index
            set_section_status(section_state, "running")
            section_state.attempts += 1
            await update_job_record(
                db, job_id,
                status=JobStatus.in_progress.value,
                progress=completed_ratio(state, total),
                resumable_state=dump_state(state),
            )

            entries = await fetch_ledger_entries(db, project_id, section_state.ledger_entry_ids)
            check_section_citations(section_state.key, section_state.ledger_entry_ids, entries)

            document = await generator(ComposeGenerationRequest(
                project_id=project_id,
                section=section_input,
                ledger_entries=entries_for_generation(entries),
                research_question=payload.research_question,
                narrative_voice=payload.narrative_voice,
            ))

            record = await commit_draft_section(
                db,
                project_id=project_id,
                section_input=section_input,
                existing_section_id=section_state.draft_section_id or section_input.section_id,
                document=document,
                entries=entries,
            )
            draft_section_id, section_type, version = record.id, record.section_type, record.version

            set_section_status(section_state, "completed")
            section_state.draft_section_id = draft_section_id
            progress = completed_ratio(state, total)
            done = progress >= 1.0
            await update_job_record(
                db, job_id,
                status=JobStatus.completed.value if done else JobStatus.in_progress.value,
                progress=progress,
                resumable_state=dump_state(state),
                **({"completed_at": datetime.now(timezone.utc)} if done else {}),
            )

            await log_activity(
                db,
                project_id=project_id,
                action="draft.section_generated",
                payload={
                    "job_id": job_id,
                    "draft_section_id": draft_section_id,
                    "section_key": section_state.key,
                    "section_type": section_type,
                    "version": version,
                    "ledger_entry_ids": [e.id for e in entries],
                },
            )
            logger.info("Job %s: section %s committed as %s v%s", job_id, section_state.key, draft_section_id, version)

        completed = completed_count(state)
        if completed == total:
            # covers a redelivery where every section had already been committed
            await update_job_record(
                db, job_id,
                status=JobStatus.completed.value,
                progress=1.0,
                resumable_state=dump_state(state),
            )
        return ComposeJobResult(completed_sections=completed, total_sections=total)

    except Exception as e:
        message = str(e)
        code = e.code if isinstance(e, ComposeError) else type(e).__name__
        await db.rollback()
        if current_key is not None:
            set_section_status(state.sections[state.current_section_index], "failed", message)
        logger.error("Compose job %s failed at section %s: %s", job_id, current_key, message)
        await update_job_record(
            db, job_id,
            status=JobStatus.failed.value,
            logs={"error": message, "code": code, "section_key": current_key},
            resumable_state=dump_state(state),
        )
        raise
