# litreview/services/worker.py
"""
Queue worker: claims due messages, dispatches them by name and acknowledges.

Handlers run with their own session. Deterministic failures (bad input,
missing entities, fatal job errors) are recorded once and not retried;
everything else goes back on the queue with backoff.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from litreview.background import spawn
from litreview.database import async_session_maker
from litreview.errors import is_retryable
from litreview.jobs import QUEUE, SessionFactory, WorkQueue
from litreview.models import QueueMessage, QueueMessageStatus
from litreview.services.compose_jobs import COMPOSE_QUEUE_JOB_NAME
from litreview.services.compose_processor import process_compose_job
from litreview.services.suggestions import SUGGESTION_QUEUE_JOB_NAME, process_suggestion_job
from litreview.settings.config import settings

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, dict], Awaitable[Any]]

HANDLERS: dict[str, Handler] = {
    COMPOSE_QUEUE_JOB_NAME: process_compose_job,
    SUGGESTION_QUEUE_JOB_NAME: process_suggestion_job,
}

scheduler: AsyncIOScheduler | None = None
_drain_lock = asyncio.Lock()


async def handle_message(
    msg: QueueMessage,
    *,
    queue: WorkQueue,
    session_factory: SessionFactory,
    handlers: Optional[dict[str, Handler]] = None,
) -> str:
    """Run one claimed message to completion. Returns the message's resulting status."""
    handler = (handlers or HANDLERS).get(msg.name)
    if handler is None:
        logger.error("No handler registered for queue message %s (%s)", msg.id, msg.name)
        return await queue.fail(msg.id, f"Unknown message name: {msg.name}", retryable=False)

    logger.info("Worker %s claimed %s for job %s (attempt %s/%s)",
                queue.worker_id, msg.name, msg.job_key, msg.attempts, msg.max_attempts)
    try:
        async with session_factory() as db:
            await handler(db, dict(msg.payload or {}))
    except Exception as e:  # noqa: BLE001
        retryable = is_retryable(e)
        status = await queue.fail(msg.id, str(e) or type(e).__name__, retryable=retryable)
        if status == QueueMessageStatus.queued.value:
            logger.warning("Job %s (%s) failed, retry scheduled: %s", msg.job_key, msg.name, e)
        else:
            logger.error("Job %s (%s) failed permanently: %s", msg.job_key, msg.name, e)
        return status

    await queue.complete(msg.id)
    logger.info("Job %s (%s) completed", msg.job_key, msg.name)
    return QueueMessageStatus.completed.value


async def drain_queue(
    queue: Optional[WorkQueue] = None,
    session_factory: Optional[SessionFactory] = None,
    *,
    max_messages: Optional[int] = None,
    handlers: Optional[dict[str, Handler]] = None,
) -> int:
    """Process due messages until none are left (or `max_messages` is hit). Returns how many ran."""
    queue = queue or QUEUE
    session_factory = session_factory or async_session_maker
    processed = 0
    while max_messages is None or processed < max_messages:
        msg = await queue.claim()
        if msg is None:
            break
        await handle_message(msg, queue=queue, session_factory=session_factory, handlers=handlers)
        processed += 1
    return processed


async def _tick() -> None:
    # overlapping interval runs would only contend for the same rows
    if _drain_lock.locked():
        return
    async with _drain_lock:
        await asyncio.gather(*(drain_queue() for _ in range(settings.WORKER_CONCURRENCY)))


async def _recover_stalled() -> None:
    await QUEUE.requeue_stalled()


def start_worker() -> AsyncIOScheduler:
    """Schedule queue draining and stall recovery on the running event loop."""
    global scheduler
    if scheduler:
        return scheduler
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _tick,
        IntervalTrigger(seconds=settings.WORKER_POLL_SECONDS),
        id="drain_queue",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _recover_stalled,
        IntervalTrigger(seconds=max(30, settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS // 4)),
        id="requeue_stalled",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    spawn(_tick(), name="initial-drain")
    logger.info("Queue worker %s started (poll=%ss, concurrency=%s)",
                QUEUE.worker_id, settings.WORKER_POLL_SECONDS, settings.WORKER_CONCURRENCY)
    return scheduler


def stop_worker() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Queue worker stopped")
