from sqlalchemy import func, select

from conftest import compose_input
from litreview.errors import TransientError
from litreview.models import DraftSection, Job
from litreview.services.compose_jobs import COMPOSE_QUEUE_JOB_NAME, enqueue_compose_job
from litreview.services.worker import drain_queue


async def _job_status(db, job_id):
    return (await db.execute(select(Job.status).where(Job.id == job_id))).scalar_one()


async def test_drain_runs_compose_job_end_to_end(db, queue, session_factory, make_entry):
    await make_entry("L1")
    job = await enqueue_compose_job(
        db, compose_input({"section_type": "introduction", "ledger_entry_ids": ["L1"]}), queue=queue
    )

    assert await drain_queue(queue, session_factory) == 1

    assert await _job_status(db, job.id) == "completed"
    assert (await queue.get(job.id)).status == "completed"
    assert (await db.execute(select(func.count()).select_from(DraftSection))).scalar_one() == 1


async def test_fatal_job_error_is_not_retried(db, queue, session_factory):
    job = await enqueue_compose_job(
        db,
        compose_input({"section_type": "introduction", "ledger_entry_ids": ["L-missing"]}),
        queue=queue, attempts=3, backoff_ms=0,
    )

    assert await drain_queue(queue, session_factory) == 1

    msg = await queue.get(job.id)
    assert msg.status == "failed"
    assert msg.attempts == 1
    assert "Missing ledger entries" in msg.last_error
    assert await _job_status(db, job.id) == "failed"


async def test_transient_errors_are_retried_until_exhausted(queue, session_factory):
    calls = []

    async def flaky(db, payload):
        calls.append(payload["job_id"])
        raise TransientError("generator timed out")

    await queue.add(COMPOSE_QUEUE_JOB_NAME, {"job_id": "j1"}, job_id="j1", attempts=2, backoff_ms=0)

    processed = await drain_queue(queue, session_factory, handlers={COMPOSE_QUEUE_JOB_NAME: flaky})

    assert processed == 2
    assert calls == ["j1", "j1"]
    msg = await queue.get("j1")
    assert msg.status == "failed"
    assert msg.last_error == "generator timed out"


async def test_unexpected_exceptions_count_as_transient(queue, session_factory):
    async def broken(db, payload):
        raise RuntimeError("connection reset")

    await queue.add(COMPOSE_QUEUE_JOB_NAME, {}, job_id="j1", attempts=3, backoff_ms=60_000)
    await drain_queue(queue, session_factory, handlers={COMPOSE_QUEUE_JOB_NAME: broken})

    msg = await queue.get("j1")
    assert msg.status == "queued"
    assert msg.attempts == 1


async def test_unknown_message_name_fails(queue, session_factory):
    await queue.add("export:bibliography", {}, job_id="j1", attempts=3)
    assert await drain_queue(queue, session_factory) == 1
    assert (await queue.get("j1")).status == "failed"


async def test_max_messages(queue, session_factory):
    async def ok(db, payload):
        return None

    for i in range(3):
        await queue.add(COMPOSE_QUEUE_JOB_NAME, {}, job_id=f"j{i}")

    assert await drain_queue(queue, session_factory, max_messages=2, handlers={COMPOSE_QUEUE_JOB_NAME: ok}) == 2
    statuses = sorted([(await queue.get(f"j{i}")).status for i in range(3)])
    assert statuses == ["completed", "completed", "queued"]
