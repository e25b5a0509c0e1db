"""Data models for crawl jobs and their outcomes."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from cats.constants import (
    DEFAULT_CRAWLER_CONCURRENCY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_WCAG_LEVEL,
    DEFAULT_WCAG_VERSION,
)


class InvalidTransitionError(Exception):
    """Raised when a job is moved to a status it cannot reach from its current one."""


class JobStatus(str, Enum):
    """Lifecycle status of a crawl job."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.ERROR,
    JobStatus.CANCELLED,
    JobStatus.TIMEOUT,
})


@dataclass
class CrawlParams:
    """Parameters of one crawl job."""

    url: str
    max_depth: int = DEFAULT_MAX_DEPTH
    max_pages: int = 50  # 0 means unlimited
    concurrency: int = DEFAULT_CRAWLER_CONCURRENCY
    wcag_version: str = DEFAULT_WCAG_VERSION
    wcag_level: str = DEFAULT_WCAG_LEVEL
    custom_tags: Optional[list[str]] = None
    use_sitemap: bool = True

    @property
    def domain(self) -> str:
        """Hostname of the seed URL."""
        return urlparse(self.url).hostname or ""

    @property
    def unlimited_pages(self) -> bool:
        return self.max_pages == 0

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "max_depth": self.max_depth,
            "max_pages": self.max_pages,
            "concurrency": self.concurrency,
            "wcag_version": self.wcag_version,
            "wcag_level": self.wcag_level,
            "custom_tags": self.custom_tags,
            "use_sitemap": self.use_sitemap,
        }


@dataclass
class CrawlResult:
    """Summary returned by a crawl worker."""
    pages_visited: int
    report_location: Optional[str] = None
    pages_failed: int = 0


@dataclass
class CrawlOutcome:
    """How a crawl worker terminated."""
    success: bool
    result: Optional[CrawlResult] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Optional[CrawlResult] = None) -> "CrawlOutcome":
        return cls(success=True, result=result)

    @classmethod
    def failure(cls, reason: str) -> "CrawlOutcome":
        return cls(success=False, error=reason)


@dataclass
class Job:
    """A unit of crawl work tracked by the scheduler.

    The scheduler is the only writer. A job's handle is set only while its
    status is RUNNING.
    """

    params: CrawlParams
    owner_id: Optional[str] = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[CrawlResult] = None
    handle: Any = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_running(self, now: datetime) -> None:
        """Move a queued job to RUNNING.

        Raises:
            InvalidTransitionError: If the job is not queued
        """
        if self.status is not JobStatus.QUEUED:
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot start from status '{self.status.value}'"
            )
        self.status = JobStatus.RUNNING
        self.started_at = max(now, self.created_at)

    def mark_terminal(
        self,
        status: JobStatus,
        now: datetime,
        error: Optional[str] = None,
    ) -> None:
        """Move the job to a terminal status and release its handle.

        Raises:
            InvalidTransitionError: If the job is already terminal or the
                target status is not terminal
        """
        if not status.is_terminal:
            raise InvalidTransitionError(f"'{status.value}' is not a terminal status")
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Job {self.job_id} already finished with status '{self.status.value}'"
            )
        if status is JobStatus.COMPLETED and self.status is not JobStatus.RUNNING:
            raise InvalidTransitionError(f"Job {self.job_id} cannot complete without running")

        self.status = status
        self.completed_at = max(now, self.started_at or self.created_at)
        if error is not None:
            self.error = error
        self.handle = None

    def can_user_modify(self, user_id: Optional[str], is_admin: bool = False) -> bool:
        """Check whether a user may cancel this job (owner or admin)."""
        if is_admin:
            return True
        return self.owner_id is not None and self.owner_id == user_id

    def to_dict(self) -> dict:
        """Snapshot for the job query surface."""
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "domain": self.params.domain,
            "status": self.status.value,
            "options": self.params.to_dict(),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "pages_visited": self.result.pages_visited if self.result else None,
            "report_location": self.result.report_location if self.result else None,
        }


@dataclass
class SubmitResult:
    """Returned synchronously by JobScheduler.submit()."""
    job_id: str
    status: JobStatus
    queue_position: int = 0  # 1-based when queued, 0 when running


@dataclass
class JobStats:
    """Capacity snapshot of the scheduler."""
    running: int
    queued: int
    max_concurrent: int
    can_admit_more: bool
    finished: int = 0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "queued": self.queued,
            "max_concurrent": self.max_concurrent,
            "can_admit_more": self.can_admit_more,
            "finished": self.finished,
        }
