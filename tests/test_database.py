# tests/test_database.py
from datetime import datetime, timedelta

import pytest

from cats.database import (
    LocalSqliteJobStore,
    NullJobStore,
    get_job_store,
)
from cats.models import CrawlParams, Job, JobStatus


@pytest.fixture
def store(tmp_path):
    """Pytest fixture providing a job store backed by a temporary database."""
    db = LocalSqliteJobStore(db_url=f"sqlite:///{tmp_path / 'test_jobs.db'}")
    yield db
    db.close()


def make_job(url="https://example.com", owner_id="user-1", created_at=None) -> Job:
    return Job(
        params=CrawlParams(url=url, max_pages=10, custom_tags=["wcag2a"]),
        owner_id=owner_id,
        created_at=created_at or datetime(2025, 1, 1, 9, 0, 0),
    )


def test_record_created_persists_job(store):
    """A new job is stored as queued with its options."""
    job = make_job()
    store.record_created(job)

    record = store.get_job(job.job_id)
    assert record["status"] == "queued"
    assert record["domain"] == "example.com"
    assert record["owner_id"] == "user-1"
    assert record["options"]["max_pages"] == 10
    assert record["options"]["custom_tags"] == ["wcag2a"]
    assert record["started_at"] is None


def test_full_lifecycle_is_recorded(store):
    job = make_job()
    store.record_created(job)

    job.mark_running(datetime(2025, 1, 1, 9, 0, 5))
    store.record_started(job)
    assert store.get_job(job.job_id)["status"] == "running"

    job.mark_terminal(JobStatus.ERROR, datetime(2025, 1, 1, 9, 3, 0), "Crawl process exited with code 1")
    store.record_terminal(job)

    record = store.get_job(job.job_id)
    assert record["status"] == "error"
    assert record["error"] == "Crawl process exited with code 1"
    assert record["started_at"] == "2025-01-01T09:00:05"
    assert record["completed_at"] == "2025-01-01T09:03:00"


def test_get_unknown_job(store):
    assert store.get_job("missing") is None


def test_list_jobs_newest_first_and_by_owner(store):
    base = datetime(2025, 1, 1)
    jobs = [
        make_job(owner_id="alice", created_at=base),
        make_job(owner_id="bob", created_at=base + timedelta(minutes=1)),
        make_job(owner_id="alice", created_at=base + timedelta(minutes=2)),
    ]
    for job in jobs:
        store.record_created(job)

    assert [r["id"] for r in store.list_jobs()] == [jobs[2].job_id, jobs[1].job_id, jobs[0].job_id]
    assert [r["id"] for r in store.list_jobs(owner_id="alice")] == [jobs[2].job_id, jobs[0].job_id]
    assert len(store.list_jobs(limit=1)) == 1


def test_get_stats(store):
    now = datetime(2025, 1, 1, 10, 0, 0)
    running = make_job(owner_id="alice")
    completed = make_job(owner_id="alice")
    failed = make_job(owner_id="bob")
    for job in (running, completed, failed):
        store.record_created(job)
        job.mark_running(now)
        store.record_started(job)

    completed.mark_terminal(JobStatus.COMPLETED, now)
    store.record_terminal(completed)
    failed.mark_terminal(JobStatus.ERROR, now, "boom")
    store.record_terminal(failed)

    assert store.get_stats() == {"total": 3, "running": 1, "completed": 1, "failed": 1}
    assert store.get_stats(owner_id="alice") == {"total": 2, "running": 1, "completed": 1, "failed": 0}


def test_stats_of_empty_store(store):
    assert store.get_stats() == {"total": 0, "running": 0, "completed": 0, "failed": 0}


def test_duplicate_job_id_raises(store):
    """Store errors propagate; the scheduler is the one that swallows them."""
    job = make_job()
    store.record_created(job)

    with pytest.raises(Exception):
        store.record_created(job)


def test_null_store_keeps_nothing():
    store = NullJobStore()
    job = make_job()
    store.record_created(job)
    store.record_terminal(job)

    assert store.get_job(job.job_id) is None
    assert store.list_jobs() == []
    assert store.get_stats()["total"] == 0


def test_get_job_store_factory(tmp_path):
    local = get_job_store("local", db_url=f"sqlite:///{tmp_path / 'factory.db'}")
    try:
        assert isinstance(local, LocalSqliteJobStore)
    finally:
        local.close()

    assert isinstance(get_job_store("none"), NullJobStore)

    with pytest.raises(ValueError, match="Unknown job store backend"):
        get_job_store("postgres")
