# litreview/services/versions.py
"""
Append-only version ledger for draft sections.

Every content mutation of a DraftSection follows the same sequence inside one
session transaction:

    await ensure_draft_section_version(db, snapshot_of(section))   # pre-mutation state
    ... mutate section (version + 1) ...
    await record_draft_section_version(db, snapshot_of(section))   # post-mutation state
    await db.commit()

Both helpers only add rows and flush; the caller owns the commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.errors import NotFoundError, ValidationError
from litreview.models import DraftSection, DraftSectionVersion, DraftStatus
from litreview.schemas import DraftSectionVersionRead, DraftSectionVersionSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SectionSnapshot:
    id: str
    version: int
    status: str
    content: Any


def snapshot_of(section: DraftSection) -> SectionSnapshot:
    return SectionSnapshot(id=section.id, version=section.version, status=section.status, content=section.content)


async def record_draft_section_version(db: AsyncSession, snapshot: SectionSnapshot) -> DraftSectionVersion:
    row = DraftSectionVersion(
        draft_section_id=snapshot.id,
        version=snapshot.version,
        status=snapshot.status,
        content=snapshot.content,
    )
    db.add(row)
    await db.flush()
    return row


async def ensure_draft_section_version(db: AsyncSession, snapshot: SectionSnapshot) -> bool:
    """Persist the snapshot unless a row for (section, version) already exists. Returns True if it wrote one."""
    existing = (
        await db.execute(
            select(DraftSectionVersion.id).where(
                DraftSectionVersion.draft_section_id == snapshot.id,
                DraftSectionVersion.version == snapshot.version,
            )
        )
    ).scalar_one_or_none()
    if existing:
        return False
    await record_draft_section_version(db, snapshot)
    return True


async def load_section_for_update(db: AsyncSession, project_id: str, section_id: str) -> DraftSection:
    """Row-locks the section for the rest of the transaction (no-op on sqlite)."""
    section = (
        await db.execute(
            select(DraftSection)
            .where(DraftSection.id == section_id, DraftSection.project_id == project_id)
            .with_for_update()
        )
    ).scalars().first()
    if not section:
        raise NotFoundError("Draft section not found")
    return section


async def _require_section(db: AsyncSession, project_id: str, section_id: str) -> None:
    found = (
        await db.execute(
            select(DraftSection.id).where(DraftSection.id == section_id, DraftSection.project_id == project_id)
        )
    ).scalar_one_or_none()
    if not found:
        raise NotFoundError("Draft section not found")


async def list_draft_section_versions(db: AsyncSession, project_id: str, section_id: str) -> list[DraftSectionVersionSummary]:
    await _require_section(db, project_id, section_id)
    rows = await db.execute(
        select(
            DraftSectionVersion.id,
            DraftSectionVersion.version,
            DraftSectionVersion.status,
            DraftSectionVersion.created_at,
        )
        .where(DraftSectionVersion.draft_section_id == section_id)
        .order_by(DraftSectionVersion.version.desc())
    )
    return [
        DraftSectionVersionSummary(id=r.id, version=r.version, status=r.status, created_at=r.created_at)
        for r in rows.all()
    ]


async def get_draft_section_version(db: AsyncSession, project_id: str, section_id: str, version: int) -> DraftSectionVersionRead:
    await _require_section(db, project_id, section_id)
    row = (
        await db.execute(
            select(DraftSectionVersion).where(
                DraftSectionVersion.draft_section_id == section_id,
                DraftSectionVersion.version == version,
            )
        )
    ).scalars().first()
    if not row:
        raise NotFoundError("Version not found")
    return DraftSectionVersionRead(
        id=row.id,
        draft_section_id=row.draft_section_id,
        version=row.version,
        status=row.status,
        content=row.content,
        created_at=row.created_at,
    )


async def rollback_draft_section(db: AsyncSession, project_id: str, section_id: str, target_version: int) -> DraftSection:
    """
    Re-apply a stored version's content/status as a NEW version (current + 1).
    Version numbers only ever move forward.
    """
    try:
        section = await load_section_for_update(db, project_id, section_id)

        target = (
            await db.execute(
                select(DraftSectionVersion).where(
                    DraftSectionVersion.draft_section_id == section.id,
                    DraftSectionVersion.version == target_version,
                )
            )
        ).scalars().first()
        if not target:
            raise NotFoundError("Version not found")
        if target_version >= section.version:
            raise ValidationError(
                f"Cannot roll back to version {target_version}; current version is {section.version}",
                details={"current_version": section.version, "target_version": target_version},
            )

        await ensure_draft_section_version(db, snapshot_of(section))

        section.content = target.content
        section.status = target.status
        section.version = section.version + 1
        section.approved_at = datetime.now(timezone.utc) if target.status == DraftStatus.approved.value else None
        await db.flush()

        await record_draft_section_version(db, snapshot_of(section))
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Rolled back draft section %s to v%s as v%s", section_id, target_version, section.version)
    return section
