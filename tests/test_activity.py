import pytest

from litreview.errors import NotFoundError
from litreview.services.activity import list_activity, log_activity
from litreview.services.job_records import create_job_record, get_job_record, update_job_record


async def test_list_activity_newest_first(db):
    for action in ("a.first", "a.second", "a.third"):
        await log_activity(db, project_id="p1", action=action)
    await log_activity(db, project_id="p2", action="a.elsewhere")

    assert [a.action for a in await list_activity(db, "p1")] == ["a.third", "a.second", "a.first"]
    assert [a.action for a in await list_activity(db, "p1", limit=1)] == ["a.third"]


async def test_activity_failure_does_not_raise(db, caplog):
    result = await log_activity(db, project_id="p1", action="bad.payload", payload={"obj": object()})
    assert result is None
    assert "Failed to append activity bad.payload" in caplog.text
    assert await list_activity(db, "p1") == []


async def test_job_record_lifecycle(db):
    job = await create_job_record(db, project_id="p1", job_type="compose.literature_review")
    job_id = job.id

    await update_job_record(db, job_id, status="in_progress", progress=0.5, worker_id="w1")
    stored = await get_job_record(db, "p1", job_id)
    await db.refresh(stored)
    assert (stored.status, stored.progress, stored.worker_id) == ("in_progress", 0.5, "w1")

    with pytest.raises(NotFoundError):
        await get_job_record(db, "p2", job_id)

    enqueued = (await list_activity(db, "p1"))[0]
    assert enqueued.action == "job.enqueued"
    assert enqueued.payload["job_id"] == job_id
