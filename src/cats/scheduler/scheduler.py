"""
Job Scheduler.

Admission control and lifecycle tracking for crawl jobs under a global
concurrency cap. Jobs run immediately while slots are free and otherwise wait
in a strict FIFO queue. A periodic sweep enforces the maximum runtime and
forgets terminal jobs once their grace period has passed.

All bookkeeping happens on the event loop thread, so no method below awaits
between reading and updating the job collections.
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from cats.config import SchedulerConfig
from cats.constants import JOB_TIMEOUT_MESSAGE
from cats.database import AbstractJobStore, NullJobStore
from cats.models import (
    CrawlOutcome,
    CrawlParams,
    Job,
    JobStats,
    JobStatus,
    SubmitResult,
)
from cats.scheduler.runners import CrawlRunner
from cats.utils import best_effort

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """Raised when a job ID is not tracked by the scheduler."""


class NothingToCancelError(Exception):
    """Raised when cancelling a job that already reached a terminal status."""


@dataclass
class SweepReport:
    """What a single sweep pass did."""
    timed_out: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    admitted: List[str] = field(default_factory=list)


class JobScheduler:
    """
    Admission-control state machine for crawl jobs.

    Features:
    - At most max_concurrent_jobs jobs running at any time
    - FIFO admission of queued jobs as slots free up
    - Cancellation of queued and running jobs
    - Timeout enforcement and eviction by a periodic sweep
    - Best-effort persistence of every status transition

    Usage:
        scheduler = JobScheduler(SubprocessCrawlRunner())
        await scheduler.start()
        result = scheduler.submit(CrawlParams(url="https://example.com"))
        await scheduler.wait_idle()
        await scheduler.stop()
    """

    def __init__(
        self,
        runner: CrawlRunner,
        job_store: Optional[AbstractJobStore] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the scheduler.

        Args:
            runner: Starts, stops and awaits crawl workers
            job_store: Durable job records (defaults to NullJobStore)
            config: Scheduler limits (defaults to SchedulerConfig())
            clock: Wall clock used for job timestamps, timeouts and eviction
        """
        self.runner = runner
        self.job_store = job_store or NullJobStore()
        self.config = config or SchedulerConfig()
        self._clock = clock

        self._queued: "OrderedDict[str, Job]" = OrderedDict()
        self._running: Dict[str, Job] = {}
        self._finished: Dict[str, Job] = {}
        # Every tracked job in submission order
        self._tracked: Dict[str, Job] = {}

        self._dispatch_tasks: Dict[str, asyncio.Task] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Submission and admission
    # ------------------------------------------------------------------

    def submit(self, params: CrawlParams, owner_id: Optional[str] = None) -> SubmitResult:
        """
        Accept a crawl job. Never rejects and never blocks.

        Args:
            params: Crawl parameters
            owner_id: Submitting user, None for anonymous jobs

        Returns:
            SubmitResult with the new job ID, its status and queue position

        Raises:
            RuntimeError: If called outside a running event loop (nothing is recorded)
        """
        asyncio.get_running_loop()
        job = Job(params=params, owner_id=owner_id, created_at=self._clock())
        self._queued[job.job_id] = job
        self._tracked[job.job_id] = job
        self._idle.clear()
        self._persist("record job creation", self.job_store.record_created, job)

        self._drain()

        if job.status is JobStatus.RUNNING:
            logger.info(f"Job {job.job_id} started immediately for {params.domain}")
            return SubmitResult(job_id=job.job_id, status=job.status, queue_position=0)

        position = self.queue_position(job.job_id)
        logger.info(
            f"Job {job.job_id} queued for {params.domain} "
            f"(position {position}, {len(self._running)}/{self.config.max_concurrent_jobs} running)"
        )
        return SubmitResult(job_id=job.job_id, status=job.status, queue_position=position)

    def queue_position(self, job_id: str) -> int:
        """1-based queue position of a job, 0 if it is not queued."""
        for position, queued_id in enumerate(self._queued, start=1):
            if queued_id == job_id:
                return position
        return 0

    def _drain(self) -> List[str]:
        """Admit queued jobs in FIFO order while slots are free."""
        admitted = []
        if self._queued and len(self._running) < self.config.max_concurrent_jobs:
            # Dispatch needs a running loop; check before any job changes state
            asyncio.get_running_loop()
        while self._queued and len(self._running) < self.config.max_concurrent_jobs:
            _, job = self._queued.popitem(last=False)
            self._admit(job)
            admitted.append(job.job_id)

        if admitted and self._queued:
            logger.info(f"{len(self._queued)} jobs still queued")
        if not self._queued and not self._running:
            self._idle.set()
        return admitted

    def _admit(self, job: Job) -> None:
        job.mark_running(self._clock())
        self._running[job.job_id] = job
        self._persist("record job start", self.job_store.record_started, job)

        task = asyncio.create_task(self._dispatch(job), name=f"dispatch-{job.job_id}")
        self._dispatch_tasks[job.job_id] = task
        task.add_done_callback(lambda _t, job_id=job.job_id: self._dispatch_tasks.pop(job_id, None))

    async def _dispatch(self, job: Job) -> None:
        """Run the worker of an admitted job and report its termination."""
        try:
            handle = await self.runner.start(job)
        except Exception as e:
            logger.error(f"Failed to start crawler for job {job.job_id}: {e}")
            self.on_worker_terminated(
                job.job_id, CrawlOutcome.failure(f"Failed to start crawler: {e}")
            )
            return

        if job.status is JobStatus.RUNNING:
            job.handle = handle
        else:
            # Cancelled or timed out while the worker was starting
            logger.info(f"Job {job.job_id} is already {job.status.value}, stopping its crawler")
            self._stop_worker(job.job_id, handle)

        try:
            outcome = await self.runner.wait(handle)
        except Exception as e:
            logger.error(f"Crawler of job {job.job_id} crashed: {e}")
            outcome = CrawlOutcome.failure(str(e) or type(e).__name__)

        self.on_worker_terminated(job.job_id, outcome)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def on_worker_terminated(self, job_id: str, outcome: CrawlOutcome) -> None:
        """
        Record how a running job's worker finished and free its slot.

        Terminations of jobs that already reached a terminal status (timed
        out or cancelled first) are ignored.
        """
        job = self._running.get(job_id)
        if job is None:
            known = self._tracked.get(job_id)
            if known is not None:
                logger.debug(
                    f"Ignoring worker termination of job {job_id}: already {known.status.value}"
                )
            else:
                logger.warning(f"Ignoring worker termination of unknown job {job_id}")
            return

        if outcome.success:
            job.result = outcome.result
            self._finish(job, JobStatus.COMPLETED)
            pages = outcome.result.pages_visited if outcome.result else 0
            logger.info(f"Job {job_id} completed ({pages} pages)")
        else:
            self._finish(job, JobStatus.ERROR, outcome.error or "Crawl failed")
            logger.error(f"Job {job_id} failed: {job.error}")

        self._drain()

    def _finish(self, job: Job, status: JobStatus, error: Optional[str] = None) -> None:
        job.mark_terminal(status, self._clock(), error)
        self._queued.pop(job.job_id, None)
        self._running.pop(job.job_id, None)
        self._finished[job.job_id] = job
        self._persist("record job termination", self.job_store.record_terminal, job)

    def cancel(self, job_id: str) -> Job:
        """
        Cancel a queued or running job.

        A queued job is marked cancelled immediately. A running job is sent a
        stop signal and marked cancelled without waiting for its worker to
        exit. Authorization is the caller's responsibility.

        Returns:
            The cancelled job

        Raises:
            NothingToCancelError: If the job already finished
            JobNotFoundError: If the job is not tracked
        """
        job = self._queued.get(job_id)
        if job is not None:
            self._finish(job, JobStatus.CANCELLED)
            logger.info(f"Cancelled queued job {job_id}")
            self._drain()
            return job

        job = self._running.get(job_id)
        if job is not None:
            if job.handle is not None:
                self._stop_worker(job_id, job.handle)
            self._finish(job, JobStatus.CANCELLED)
            logger.info(f"Cancelled running job {job_id}")
            self._drain()
            return job

        job = self._tracked.get(job_id)
        if job is not None:
            raise NothingToCancelError(f"Job {job_id} already finished with status '{job.status.value}'")
        raise JobNotFoundError(job_id)

    def _stop_worker(self, job_id: str, handle: Any) -> None:
        _ = best_effort(f"stop crawler of job {job_id}", self.runner.request_stop, handle)

    def _persist(self, description: str, operation: Callable[[Job], None], job: Job) -> None:
        _ = best_effort(f"{description} ({job.job_id})", operation, job)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> SweepReport:
        """
        Enforce the runtime limit and evict old terminal jobs.

        Running jobs older than max_job_runtime_seconds are stopped and marked
        timeout. Terminal jobs finished longer than cleanup_delay_seconds ago
        stop being tracked. Freed slots are refilled from the queue.
        """
        report = SweepReport()
        now = self._clock()
        max_runtime = timedelta(seconds=self.config.max_job_runtime_seconds)
        cleanup_delay = timedelta(seconds=self.config.cleanup_delay_seconds)

        expired = [
            job for job in self._running.values()
            if job.started_at is not None and now - job.started_at > max_runtime
        ]
        for job in expired:
            logger.warning(f"Job {job.job_id} exceeded maximum runtime, terminating")
            if job.handle is not None:
                self._stop_worker(job.job_id, job.handle)
            self._finish(job, JobStatus.TIMEOUT, JOB_TIMEOUT_MESSAGE)
            report.timed_out.append(job.job_id)

        for job_id, job in list(self._finished.items()):
            if job.completed_at is not None and now - job.completed_at > cleanup_delay:
                del self._finished[job_id]
                self._tracked.pop(job_id, None)
                report.evicted.append(job_id)

        if report.evicted:
            logger.info(f"Evicted {len(report.evicted)} finished jobs")

        report.admitted = self._drain()
        return report

    async def _sweep_loop(self) -> None:
        interval = self.config.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Job sweep failed: {e}", exc_info=True)

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="job-sweep")
        logger.info(
            f"Job scheduler started (max {self.config.max_concurrent_jobs} concurrent jobs, "
            f"sweep every {self.config.sweep_interval_seconds}s)"
        )

    async def stop(self, cancel_running: bool = True) -> None:
        """
        Stop the periodic sweep.

        Args:
            cancel_running: Also cancel queued jobs and stop running workers,
                then wait for their dispatch tasks to finish
        """
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        if not cancel_running:
            return

        # Queued jobs first, otherwise freed slots would admit them
        for job_id in list(self._queued):
            self.cancel(job_id)
        for job_id in list(self._running):
            self.cancel(job_id)

        tasks = list(self._dispatch_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait until no job is queued or running."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    def stats(self) -> JobStats:
        running = len(self._running)
        return JobStats(
            running=running,
            queued=len(self._queued),
            max_concurrent=self.config.max_concurrent_jobs,
            can_admit_more=running < self.config.max_concurrent_jobs,
            finished=len(self._finished),
        )

    def list_active(self) -> List[Job]:
        """Running jobs and not yet evicted terminal jobs, oldest submission first."""
        return [job for job in self._tracked.values() if job.status is not JobStatus.QUEUED]

    def list_queued(self) -> List[Job]:
        """Queued jobs in admission order."""
        return list(self._queued.values())

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._tracked.get(job_id)
