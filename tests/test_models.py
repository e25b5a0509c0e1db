"""Tests for job models and their transitions."""

from datetime import datetime, timedelta

import pytest

from cats.models import (
    CrawlOutcome,
    CrawlParams,
    CrawlResult,
    InvalidTransitionError,
    Job,
    JobStats,
    JobStatus,
    TERMINAL_STATUSES,
)

T0 = datetime(2025, 3, 1, 8, 0, 0)


def make_job(**kwargs) -> Job:
    return Job(params=CrawlParams(url="https://Example.com/path"), created_at=T0, **kwargs)


class TestJobStatus:
    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {
            JobStatus.COMPLETED,
            JobStatus.ERROR,
            JobStatus.CANCELLED,
            JobStatus.TIMEOUT,
        }
        assert not JobStatus.QUEUED.is_terminal
        assert not JobStatus.RUNNING.is_terminal

    def test_values_are_strings(self):
        assert JobStatus("timeout") is JobStatus.TIMEOUT
        assert JobStatus.CANCELLED == "cancelled"


class TestCrawlParams:
    def test_defaults(self):
        params = CrawlParams(url="https://example.com")
        assert params.max_depth == 2
        assert params.max_pages == 50
        assert params.concurrency == 4
        assert params.wcag_version == "2.1"
        assert params.wcag_level == "AA"
        assert params.use_sitemap is True

    def test_domain_is_lowercase_hostname(self):
        assert CrawlParams(url="https://Example.com:8443/a").domain == "example.com"

    def test_zero_pages_means_unlimited(self):
        assert CrawlParams(url="https://example.com", max_pages=0).unlimited_pages is True
        assert CrawlParams(url="https://example.com").unlimited_pages is False


class TestJobTransitions:
    def test_new_job_is_queued_with_fresh_id(self):
        first, second = make_job(), make_job()
        assert first.status is JobStatus.QUEUED
        assert first.job_id != second.job_id
        assert first.handle is None

    def test_running_then_completed(self):
        job = make_job()
        job.mark_running(T0 + timedelta(seconds=1))
        job.handle = object()

        job.mark_terminal(JobStatus.COMPLETED, T0 + timedelta(seconds=30))

        assert job.status is JobStatus.COMPLETED
        assert job.started_at == T0 + timedelta(seconds=1)
        assert job.completed_at == T0 + timedelta(seconds=30)
        assert job.handle is None

    def test_cannot_start_twice(self):
        job = make_job()
        job.mark_running(T0)

        with pytest.raises(InvalidTransitionError):
            job.mark_running(T0)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_status_is_final(self, status):
        job = make_job()
        job.mark_running(T0)
        job.mark_terminal(status, T0)

        with pytest.raises(InvalidTransitionError):
            job.mark_terminal(JobStatus.ERROR, T0)
        with pytest.raises(InvalidTransitionError):
            job.mark_running(T0)
        assert job.status is status

    def test_queued_job_can_be_cancelled_but_not_completed(self):
        job = make_job()
        with pytest.raises(InvalidTransitionError):
            job.mark_terminal(JobStatus.COMPLETED, T0)

        job.mark_terminal(JobStatus.CANCELLED, T0)
        assert job.status is JobStatus.CANCELLED
        assert job.started_at is None

    def test_non_terminal_target_rejected(self):
        job = make_job()
        with pytest.raises(InvalidTransitionError):
            job.mark_terminal(JobStatus.RUNNING, T0)

    def test_timestamps_stay_monotonic_when_clock_goes_back(self):
        job = make_job()
        job.mark_running(T0 - timedelta(seconds=5))
        job.mark_terminal(JobStatus.ERROR, T0 - timedelta(seconds=10), "boom")

        assert job.created_at <= job.started_at <= job.completed_at
        assert job.error == "boom"


class TestOwnership:
    def test_owner_and_admin_can_modify(self):
        job = make_job(owner_id="alice")
        assert job.can_user_modify("alice")
        assert not job.can_user_modify("bob")
        assert job.can_user_modify("bob", is_admin=True)

    def test_anonymous_job_only_modifiable_by_admin(self):
        job = make_job()
        assert not job.can_user_modify(None)
        assert job.can_user_modify(None, is_admin=True)


class TestSnapshots:
    def test_job_to_dict(self):
        job = make_job(owner_id="alice")
        job.mark_running(T0)
        job.result = CrawlResult(pages_visited=3, report_location="reports/x.json")
        job.mark_terminal(JobStatus.COMPLETED, T0 + timedelta(minutes=2))

        data = job.to_dict()

        assert data["status"] == "completed"
        assert data["domain"] == "example.com"
        assert data["pages_visited"] == 3
        assert data["report_location"] == "reports/x.json"
        assert data["completed_at"] == "2025-03-01T08:02:00"
        assert "handle" not in data

    def test_outcome_constructors(self):
        ok = CrawlOutcome.ok(CrawlResult(pages_visited=1))
        failed = CrawlOutcome.failure("timeout while loading")

        assert ok.success and ok.error is None
        assert not failed.success and failed.error == "timeout while loading"

    def test_stats_to_dict(self):
        stats = JobStats(running=3, queued=2, max_concurrent=3, can_admit_more=False)
        assert stats.to_dict() == {
            "running": 3,
            "queued": 2,
            "max_concurrent": 3,
            "can_admit_more": False,
            "finished": 0,
        }
