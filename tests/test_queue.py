from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from litreview.jobs import WorkQueue
from litreview.models import QueueMessage


def _naive(dt):
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def _utcnow_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def test_add_is_idempotent_per_job(queue):
    first = await queue.add("compose:literature-review", {"job_id": "j1"}, job_id="j1")
    second = await queue.add("compose:literature-review", {"job_id": "j1", "other": True}, job_id="j1")
    assert first.id == second.id
    assert (await queue.get("j1")).payload == {"job_id": "j1"}


async def test_claim_and_complete(queue):
    await queue.add("draft:suggestion", {"x": 1}, job_id="j1")

    msg = await queue.claim()
    assert msg.status == "active"
    assert msg.attempts == 1
    assert msg.locked_by == "test-worker"
    assert await queue.claim() is None

    await queue.complete(msg.id)
    done = await queue.get("j1")
    assert done.status == "completed"
    assert done.locked_by is None


async def test_message_is_claimed_by_one_worker(session_factory):
    a = WorkQueue(session_factory, worker_id="a")
    b = WorkQueue(session_factory, worker_id="b")
    await a.add("draft:suggestion", {}, job_id="j1")

    claimed = [await a.claim(), await b.claim()]
    assert [m is not None for m in claimed] == [True, False]


async def test_retry_with_exponential_backoff(queue):
    await queue.add("compose:literature-review", {}, job_id="j1", attempts=3, backoff_ms=60_000)

    msg = await queue.claim()
    assert await queue.fail(msg.id, "generator timeout") == "queued"
    retry = await queue.get("j1")
    assert retry.last_error == "generator timeout"
    delay = _naive(retry.available_at) - _utcnow_naive()
    assert timedelta(seconds=50) < delay <= timedelta(seconds=60)
    # not due yet
    assert await queue.claim() is None


async def test_backoff_doubles_per_attempt(queue, session_factory):
    await queue.add("compose:literature-review", {}, job_id="j1", attempts=3, backoff_ms=60_000)
    msg = await queue.claim()
    await queue.fail(msg.id, "first")
    async with session_factory() as db:
        await db.execute(update(QueueMessage).values(available_at=datetime.now(timezone.utc)))
        await db.commit()

    msg = await queue.claim()
    assert msg.attempts == 2
    assert await queue.fail(msg.id, "second") == "queued"
    delay = _naive((await queue.get("j1")).available_at) - _utcnow_naive()
    assert timedelta(seconds=110) < delay <= timedelta(seconds=120)


async def test_attempts_exhausted(queue):
    await queue.add("compose:literature-review", {}, job_id="j1", attempts=2, backoff_ms=0)

    first = await queue.claim()
    assert await queue.fail(first.id, "boom") == "queued"
    second = await queue.claim()
    assert second.attempts == 2
    assert await queue.fail(second.id, "boom again") == "failed"
    assert await queue.claim() is None
    assert (await queue.get("j1")).last_error == "boom again"


async def test_non_retryable_failure_is_final(queue):
    await queue.add("compose:literature-review", {}, job_id="j1", attempts=5, backoff_ms=0)
    msg = await queue.claim()
    assert await queue.fail(msg.id, "Missing ledger entries: L9", retryable=False) == "failed"
    assert (await queue.get("j1")).attempts == 1


async def test_stalled_messages_are_redelivered(queue, session_factory):
    await queue.add("compose:literature-review", {}, job_id="j1")
    await queue.add("compose:literature-review", {}, job_id="j2")
    stalled = await queue.claim()
    fresh = await queue.claim()
    async with session_factory() as db:
        await db.execute(
            update(QueueMessage)
            .where(QueueMessage.id == stalled.id)
            .values(locked_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        await db.commit()

    assert await queue.requeue_stalled(older_than_seconds=60) == 1

    again = await queue.claim()
    assert again.id == stalled.id
    assert again.attempts == 2
    assert (await queue.get(fresh.job_key)).status == "active"
