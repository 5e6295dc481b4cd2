# litreview/services/draft_sections.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from litreview.errors import NotFoundError, ValidationError
from litreview.models import DraftSection, DraftSectionCitation, DraftSectionVersion, DraftStatus
from litreview.schemas import DraftSectionRead, DraftSectionVersionSummary, LedgerEntryRead
from litreview.services.activity import log_activity
from litreview.services.documents import dump_document, parse_document
from litreview.services.versions import (
    ensure_draft_section_version,
    load_section_for_update,
    record_draft_section_version,
    snapshot_of,
)

logger = logging.getLogger(__name__)

RECENT_VERSIONS = 5


async def _recent_versions(db: AsyncSession, section_ids: list[str]) -> dict[str, list[DraftSectionVersionSummary]]:
    if not section_ids:
        return {}
    rows = await db.execute(
        select(
            DraftSectionVersion.id,
            DraftSectionVersion.draft_section_id,
            DraftSectionVersion.version,
            DraftSectionVersion.status,
            DraftSectionVersion.created_at,
        )
        .where(DraftSectionVersion.draft_section_id.in_(section_ids))
        .order_by(DraftSectionVersion.draft_section_id, DraftSectionVersion.version.desc())
    )
    out: dict[str, list[DraftSectionVersionSummary]] = {sid: [] for sid in section_ids}
    for r in rows.all():
        bucket = out[r.draft_section_id]
        if len(bucket) < RECENT_VERSIONS:
            bucket.append(DraftSectionVersionSummary(id=r.id, version=r.version, status=r.status, created_at=r.created_at))
    return out


def _to_read(section: DraftSection, history: list[DraftSectionVersionSummary]) -> DraftSectionRead:
    entries = sorted(
        (c.ledger_entry for c in section.citations if c.ledger_entry is not None),
        key=lambda e: e.citation_key,
    )
    return DraftSectionRead(
        id=section.id,
        project_id=section.project_id,
        section_type=section.section_type,
        content=section.content,
        status=section.status,
        version=section.version,
        approved_at=section.approved_at,
        created_at=section.created_at,
        updated_at=section.updated_at,
        ledger_entries=[LedgerEntryRead.model_validate(e) for e in entries],
        version_history=history,
    )


def _section_query(project_id: str):
    return (
        select(DraftSection)
        .where(DraftSection.project_id == project_id)
        .options(selectinload(DraftSection.citations).joinedload(DraftSectionCitation.ledger_entry))
        .execution_options(populate_existing=True)
    )


async def list_draft_sections(db: AsyncSession, project_id: str) -> list[DraftSectionRead]:
    """Oldest first, each with its cited ledger entries and the latest version summaries."""
    sections = (
        await db.execute(_section_query(project_id).order_by(DraftSection.created_at.asc(), DraftSection.id.asc()))
    ).scalars().all()
    history = await _recent_versions(db, [s.id for s in sections])
    return [_to_read(s, history.get(s.id, [])) for s in sections]


async def get_draft_section(db: AsyncSession, project_id: str, section_id: str) -> DraftSectionRead:
    section = (
        await db.execute(_section_query(project_id).where(DraftSection.id == section_id))
    ).scalars().first()
    if not section:
        raise NotFoundError("Draft section not found")
    history = await _recent_versions(db, [section.id])
    return _to_read(section, history[section.id])


async def update_draft_section(
    db: AsyncSession,
    project_id: str,
    section_id: str,
    *,
    content: Optional[Any] = None,
    status: Optional[str] = None,
    actor: str = "system",
) -> DraftSection:
    """
    Manual edit. New content bumps the version, reverts the section to draft
    and is recorded in the version ledger. A status-only change (approve or
    un-approve) keeps the version number.
    """
    if content is None and status is None:
        raise ValidationError("Nothing to update")
    if status is not None and status not in (DraftStatus.draft.value, DraftStatus.approved.value):
        raise ValidationError(f"Unsupported draft status: {status}")
    new_content = dump_document(parse_document(content)) if content is not None else None

    try:
        section = await load_section_for_update(db, project_id, section_id)
        await ensure_draft_section_version(db, snapshot_of(section))

        if new_content is not None:
            section.content = new_content
            section.version = section.version + 1
            section.status = DraftStatus.draft.value
            section.approved_at = None
            await db.flush()
            await record_draft_section_version(db, snapshot_of(section))
        else:
            section.status = status
            section.approved_at = datetime.now(timezone.utc) if status == DraftStatus.approved.value else None
            await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await log_activity(
        db,
        project_id=project_id,
        actor=actor,
        action="draft.section_updated",
        payload={
            "draft_section_id": section_id,
            "version": section.version,
            "status": section.status,
            "content_changed": new_content is not None,
        },
    )
    return section
