# litreview/jobs.py
"""
Durable work queue backed by the ``queue_message`` table.

Delivery is at-least-once: a message is claimed by exactly one worker at a
time, and a claim that is never acknowledged (worker crash) becomes visible
again after the visibility timeout. Retries use exponential backoff
(``backoff_ms * 2 ** (attempt - 1)``) until ``max_attempts`` is reached.
"""
from __future__ import annotations

import logging
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.database import async_session_maker
from litreview.models import QueueMessage, QueueMessageStatus
from litreview.settings.config import settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def default_worker_id() -> str:
    return settings.WORKER_ID or f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class WorkQueue:
    def __init__(self, session_factory: SessionFactory, *, worker_id: Optional[str] = None):
        self._session_factory = session_factory
        self.worker_id = worker_id or default_worker_id()

    async def add(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        job_id: str,
        attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
    ) -> QueueMessage:
        """Submit a message. A second submission for the same job id returns the first message."""
        async with self._session_factory() as db:
            existing = (
                await db.execute(select(QueueMessage).where(QueueMessage.job_key == job_id))
            ).scalars().first()
            if existing:
                logger.info("Queue message for job %s already present (%s)", job_id, existing.status)
                return existing

            msg = QueueMessage(
                name=name,
                job_key=job_id,
                payload=payload,
                status=QueueMessageStatus.queued.value,
                attempts=0,
                max_attempts=attempts or settings.COMPOSE_QUEUE_ATTEMPTS,
                backoff_ms=settings.COMPOSE_QUEUE_BACKOFF_MS if backoff_ms is None else backoff_ms,
                available_at=_now(),
            )
            db.add(msg)
            try:
                await db.commit()
            except IntegrityError:
                # lost a race with another submitter for the same job id
                await db.rollback()
                return (
                    await db.execute(select(QueueMessage).where(QueueMessage.job_key == job_id))
                ).scalars().one()
            return msg

    async def claim(self) -> Optional[QueueMessage]:
        """Move one due message to `active` for this worker, or return None."""
        async with self._session_factory() as db:
            candidate = (
                await db.execute(
                    select(QueueMessage.id)
                    .where(
                        QueueMessage.status == QueueMessageStatus.queued.value,
                        QueueMessage.available_at <= _now(),
                    )
                    .order_by(QueueMessage.available_at.asc(), QueueMessage.created_at.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
            ).scalar_one_or_none()
            if candidate is None:
                await db.rollback()
                return None

            result = await db.execute(
                update(QueueMessage)
                .where(QueueMessage.id == candidate, QueueMessage.status == QueueMessageStatus.queued.value)
                .values(
                    status=QueueMessageStatus.active.value,
                    attempts=QueueMessage.attempts + 1,
                    locked_at=_now(),
                    locked_by=self.worker_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # another worker got it first
                await db.rollback()
                return None
            await db.commit()
            return await db.get(QueueMessage, candidate, populate_existing=True)

    async def complete(self, message_id: str) -> None:
        await self._set(message_id, status=QueueMessageStatus.completed.value, locked_at=None, locked_by=None)

    async def fail(self, message_id: str, error: str, *, retryable: bool = True) -> str:
        """Record a failed attempt. Returns the resulting status (`queued` when a retry was scheduled)."""
        async with self._session_factory() as db:
            msg = await db.get(QueueMessage, message_id)
            if msg is None:
                return QueueMessageStatus.failed.value
            if retryable and msg.attempts < msg.max_attempts:
                delay_ms = msg.backoff_ms * (2 ** max(0, msg.attempts - 1))
                msg.status = QueueMessageStatus.queued.value
                msg.available_at = _now() + timedelta(milliseconds=delay_ms)
                logger.info(
                    "Retry %s/%s for %s (%s) in %sms", msg.attempts + 1, msg.max_attempts, msg.job_key, msg.name, delay_ms
                )
            else:
                msg.status = QueueMessageStatus.failed.value
            msg.last_error = error[:2000]
            msg.locked_at = None
            msg.locked_by = None
            status = msg.status
            await db.commit()
            return status

    async def requeue_stalled(self, *, older_than_seconds: Optional[int] = None) -> int:
        """Release messages whose worker stopped acknowledging them."""
        timeout = older_than_seconds or settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS
        cutoff = _now() - timedelta(seconds=timeout)
        async with self._session_factory() as db:
            result = await db.execute(
                update(QueueMessage)
                .where(QueueMessage.status == QueueMessageStatus.active.value, QueueMessage.locked_at < cutoff)
                .values(status=QueueMessageStatus.queued.value, locked_at=None, locked_by=None, available_at=_now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            count = result.rowcount or 0
        if count:
            logger.warning("Requeued %s stalled queue message(s)", count)
        return count

    async def get(self, job_id: str) -> Optional[QueueMessage]:
        async with self._session_factory() as db:
            return (
                await db.execute(select(QueueMessage).where(QueueMessage.job_key == job_id))
            ).scalars().first()

    async def _set(self, message_id: str, **values: Any) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(QueueMessage)
                .where(QueueMessage.id == message_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()


QUEUE = WorkQueue(async_session_maker)
