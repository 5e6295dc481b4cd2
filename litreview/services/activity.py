"""Activity log helpers. Writes are fire-and-forget: a failed append is logged
and never breaks the operation that emitted it."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.models import ActivityLog

logger = logging.getLogger(__name__)


async def log_activity(
    db: AsyncSession,
    *,
    project_id: str,
    action: str,
    payload: Optional[dict[str, Any]] = None,
    actor: str = "system",
) -> ActivityLog | None:
    entry = ActivityLog(project_id=project_id, actor=actor, action=action, payload=payload)
    try:
        db.add(entry)
        await db.commit()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to append activity %s for project %s", action, project_id)
        await db.rollback()
        return None
    return entry


async def list_activity(db: AsyncSession, project_id: str, limit: int = 50) -> list[ActivityLog]:
    rows = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.project_id == project_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
    )
    return list(rows.scalars().all())
